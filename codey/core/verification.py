from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from typing import Callable

from loguru import logger

from codey.core.errors import ExecutionError
from codey.core.execution import ExecutionClient
from codey.core.problems import TestCase
from codey.core.registry import Challenge


@dataclass(frozen=True)
class Verdict:
    passed: bool
    passes: int
    total: int
    timed_out: bool = False

    @property
    def message(self) -> str:
        if self.passed:
            return f"Congratz! All {self.total} tests pass"
        return f"you loose, only {self.passes}/{self.total} test cases correct"


class VerdictLatch:
    """Single-fire holder for a run's verdict. Only the first `fire` sticks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._verdict: Verdict | None = None

    def fire(self, verdict: Verdict) -> bool:
        with self._lock:
            if self._verdict is not None:
                return False
            self._verdict = verdict
            return True

    @property
    def fired(self) -> bool:
        return self.verdict is not None

    @property
    def verdict(self) -> Verdict | None:
        with self._lock:
            return self._verdict


class VerificationRun:
    """Fans one submission out to every test case and folds the replies into one verdict.

    Replies are pushed into `record` in any order and from any thread. The
    counters and the verdict decision share one lock, so the reply that makes
    `passes == total` (or `replies == total`) is the one that fires the latch.
    Whatever arrives after that is dropped.
    """

    def __init__(
        self,
        challenge: Challenge,
        code: str,
        language: str,
        client: ExecutionClient,
        on_verdict: Callable[[Verdict], None] | None = None,
        timeout: float | None = None,
    ):
        self.challenge = challenge
        self.code = code
        self.language = language
        self.client = client
        self.on_verdict = on_verdict
        self.timeout = timeout
        self.testcases: tuple[TestCase, ...] = tuple(challenge.problem.testcases)
        self.total = len(self.testcases)
        self.replies = 0
        self.passes = 0
        self.latch = VerdictLatch()
        self._replied: set[int] = set()
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._done: asyncio.Future[Verdict] | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def verdict(self) -> Verdict | None:
        return self.latch.verdict

    def record(self, index: int, output: str | None) -> Verdict | None:
        """Count one reply for test case `index`; `output` is None when the execution failed.

        Returns the verdict if this reply fired it.
        """
        case = self.testcases[index]
        with self._lock:
            if self.latch.fired or index in self._replied:
                logger.debug(f"dropping late reply for case {index} of {self.challenge.problem.name}")
                return None
            self._replied.add(index)
            self.replies += 1
            if output is not None and case.matches(output):
                self.passes += 1

            verdict = None
            if self.passes == self.total:
                verdict = Verdict(passed=True, passes=self.passes, total=self.total)
            elif self.replies == self.total:
                verdict = Verdict(passed=False, passes=self.passes, total=self.total)
            if verdict is None or not self.latch.fire(verdict):
                return None

        self._deliver(verdict)
        return verdict

    def expire(self) -> Verdict:
        """Give up waiting. Returns the run's verdict, whichever one got latched first."""
        with self._lock:
            timed_out = Verdict(passed=False, passes=self.passes, total=self.total, timed_out=True)
            if not self.latch.fire(timed_out):
                return self.latch.verdict or timed_out
        logger.warning(
            f"verification of {self.challenge.problem.name} timed out after "
            f"{self.replies}/{self.total} replies"
        )
        self._deliver(timed_out)
        return timed_out

    def _deliver(self, verdict: Verdict) -> None:
        if self._loop is not None and self._done is not None:
            self._loop.call_soon_threadsafe(self._resolve, verdict)
        if self.on_verdict is not None:
            self.on_verdict(verdict)

    def _resolve(self, verdict: Verdict) -> None:
        if self._done is not None and not self._done.done():
            self._done.set_result(verdict)

    async def _execute(self, index: int) -> None:
        case = self.testcases[index]
        output: str | None
        try:
            result = await self.client.submit(self.code, self.language, case.input)
            output = result.trimmed
            logger.info(f"Actual: '{output}' Expected: '{case.output}'")
        except ExecutionError as e:
            logger.warning(f"execution of case {index} failed: {e}")
            output = None
        except Exception as e:
            logger.opt(exception=e).error(f"execution client crashed on case {index}")
            output = None
        self.record(index, output)

    async def run(self) -> Verdict:
        self._loop = asyncio.get_running_loop()
        self._done = self._loop.create_future()

        if self.total == 0:
            verdict = Verdict(passed=True, passes=0, total=0)
            if self.latch.fire(verdict):
                self._deliver(verdict)
            return self.latch.verdict or verdict

        for index in range(self.total):
            task = asyncio.create_task(self._execute(index))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        try:
            return await asyncio.wait_for(self._done, self.timeout)
        except asyncio.TimeoutError:
            return self.expire()
