from __future__ import annotations

import asyncio
import random
from collections import OrderedDict
from typing import Hashable, Protocol, Sequence

from loguru import logger
from rich.console import Console
from rich.markup import escape

from codey.core.audit import append_audit
from codey.core.errors import StateError
from codey.core.execution import ExecutionClient
from codey.core.messages import code_parts
from codey.core.problems import Problem
from codey.core.registry import Challenge, ChallengeRegistry
from codey.core.verification import Verdict, VerificationRun


CREATE_CHALLENGE = "$create"
SHOW_CHALLENGE = "$show"

VERIFY = "\N{CYCLONE}"

# code messages remembered per channel, oldest forgotten first
MAX_STORED_MESSAGES = 50


class Notifier(Protocol):
    def send(self, text: str, channel: Hashable) -> None: ...


class ConsoleNotifier:
    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def send(self, text: str, channel: Hashable) -> None:
        self.console.print(f"[bold cyan]#{escape(str(channel))}[/bold cyan] {escape(text)}")


class ChallengeBot:
    """Runs the challenge lifecycle for every channel it hears from.

    Chat events come in through `on_message` and `on_reaction`; everything
    the bot says goes out through the notifier. Must be driven from a running
    event loop, since challenge expiry is an asyncio timer.
    """

    def __init__(
        self,
        problems: Sequence[Problem],
        registry: ChallengeRegistry,
        client: ExecutionClient,
        notifier: Notifier,
        verification_timeout: float | None = None,
        audit_path: str | None = None,
        rng: random.Random | None = None,
    ):
        self.problems = list(problems)
        self.registry = registry
        self.client = client
        self.notifier = notifier
        self.verification_timeout = verification_timeout
        self.audit_path = audit_path
        self.rng = rng or random.Random()
        self._messages: dict[Hashable, OrderedDict[Hashable, str]] = {}
        self._timers: dict[Challenge, asyncio.Task] = {}
        self._channel_locks: dict[Hashable, asyncio.Lock] = {}

    def notify(self, text: str, channel: Hashable) -> None:
        try:
            self.notifier.send(text, channel)
        except Exception as e:
            logger.opt(exception=e).warning(f"could not deliver message to {channel}")

    def _audit(self, event: dict) -> None:
        if not self.audit_path:
            return
        try:
            append_audit(event, self.audit_path)
        except OSError as e:
            logger.warning(f"could not write audit event {event.get('event')}: {e}")

    def _remember(self, channel: Hashable, message_id: Hashable, raw: str) -> None:
        stored = self._messages.setdefault(channel, OrderedDict())
        stored[message_id] = raw
        stored.move_to_end(message_id)
        while len(stored) > MAX_STORED_MESSAGES:
            stored.popitem(last=False)

    def _forget_messages(self, channel: Hashable, challenge: Challenge | None = None) -> None:
        # a replaced challenge finishing late must not drop its successor's messages
        if challenge is not None and self.registry.show(channel) is not challenge:
            return
        self._messages.pop(channel, None)

    async def on_message(self, raw: str, channel: Hashable, message_id: Hashable | None = None) -> bool:
        """Handle a chat message. Returns True when it was marked for verification."""
        command = raw.strip()
        if command == CREATE_CHALLENGE:
            self.create_challenge(channel)
        elif command == SHOW_CHALLENGE:
            self.show_challenge(channel)

        if self.registry.active_challenge(channel) is None or not code_parts(raw):
            return False
        if message_id is not None:
            self._remember(channel, message_id, raw)
        logger.debug(f"message {message_id} in {channel} marked with {VERIFY}")
        return True

    async def on_reaction(self, message_id: Hashable, emoji: str, channel: Hashable) -> list[Verdict]:
        if emoji != VERIFY:
            return []

        try:
            challenge = self.registry.require_active(channel)
        except StateError:
            self.notify("No active challenge", channel)
            return []

        raw = self._messages.get(channel, {}).get(message_id)
        if raw is None:
            self.notify("Message not found", channel)
            return []

        verdicts: list[Verdict] = []
        for part in code_parts(raw):
            if not challenge.is_active:
                break
            verdict = await self.verify(part.text, part.lang, channel, challenge)
            if verdict is None:
                break
            verdicts.append(verdict)
        return verdicts

    def create_challenge(self, channel: Hashable) -> Challenge | None:
        if not self.problems:
            self.notify("No challenges found", channel)
            return None

        problem = self.rng.choice(self.problems)
        previous = self.registry.show(channel)
        challenge = self.registry.create(channel, problem)
        if previous is not None:
            self._disarm_timer(previous)
        self._forget_messages(channel)
        self._arm_timer(challenge)
        logger.info(f"new challenge {problem.name} in {channel}")
        self._audit({"event": "challenge_create", "channel": channel, "problem": problem.name})
        self.notify(f"*New Challenge! Good luck*\n\n{challenge}", channel)
        return challenge

    def show_challenge(self, channel: Hashable) -> None:
        challenge = self.registry.show(channel)
        if challenge is None:
            self.notify("No challenge in this channel available", channel)
        elif challenge.is_active:
            self.notify(f"Challenge ACTIVE:\n{challenge}", channel)
        else:
            self.notify("Challenge DONE", channel)

    async def verify(
        self,
        code: str,
        language: str,
        channel: Hashable,
        challenge: Challenge | None = None,
    ) -> Verdict | None:
        """Verify one submission. Returns None when the challenge is over by the time the channel is free."""
        challenge = challenge or self.registry.require_active(channel)
        lock = self._channel_locks.setdefault(channel, asyncio.Lock())
        async with lock:
            if not challenge.is_active:
                self.notify("No active challenge", channel)
                return None
            self.notify(
                f"verifying for challenge {challenge.problem.name} code: ```{language}\n{code.strip()}\n```",
                channel,
            )
            run = VerificationRun(
                challenge,
                code,
                language,
                self.client,
                on_verdict=lambda verdict: self._on_verdict(challenge, verdict),
                timeout=self.verification_timeout,
            )
            return await run.run()

    def _on_verdict(self, challenge: Challenge, verdict: Verdict) -> None:
        self.notify(verdict.message, challenge.channel)
        if verdict.passed and challenge.finish():
            logger.info(f"challenge {challenge.problem.name} in {challenge.channel} solved")
            self._disarm_timer(challenge)
            self._forget_messages(challenge.channel, challenge)
        self._audit(
            {
                "event": "verdict",
                "channel": challenge.channel,
                "problem": challenge.problem.name,
                "passed": verdict.passed,
                "passes": verdict.passes,
                "total": verdict.total,
                "timed_out": verdict.timed_out,
            }
        )

    def _arm_timer(self, challenge: Challenge) -> None:
        task = asyncio.get_running_loop().create_task(self._expire_after(challenge))
        self._timers[challenge] = task
        task.add_done_callback(lambda t: self._timers.pop(challenge, None))

    def _disarm_timer(self, challenge: Challenge) -> None:
        task = self._timers.pop(challenge, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _expire_after(self, challenge: Challenge) -> None:
        await asyncio.sleep(challenge.duration)
        self.expire(challenge)

    def expire(self, challenge: Challenge) -> bool:
        if not challenge.finish():
            return False
        logger.info(f"challenge {challenge.problem.name} in {challenge.channel} expired")
        self._forget_messages(challenge.channel, challenge)
        self._audit({"event": "challenge_expired", "channel": challenge.channel, "problem": challenge.problem.name})
        self.notify(f"Time is up for challenge:\n{challenge}", challenge.channel)
        return True

    async def close(self) -> None:
        timers = list(self._timers.values())
        for task in timers:
            task.cancel()
        await asyncio.gather(*timers, return_exceptions=True)
        self._timers.clear()
