from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Hashable

from codey.core.errors import StateError
from codey.core.problems import Problem


DEFAULT_DURATION = 30 * 60.0


class State(str, Enum):
    ACTIVE = "ACTIVE"
    DONE = "DONE"


class Challenge:
    """A problem posed to one channel.

    The state only ever moves ACTIVE -> DONE, through `finish()`. Both the
    expiry timer and a passing verification race for that transition, so it
    is a compare-and-set under a lock and only the winner gets True back.
    """

    def __init__(self, problem: Problem, channel: Hashable, duration: float = DEFAULT_DURATION):
        self.problem = problem
        self.channel = channel
        self.duration = duration
        self.created_at = time.time()
        self.expires_at = self.created_at + duration
        self._state = State.ACTIVE
        self._lock = threading.Lock()

    @property
    def state(self) -> State:
        with self._lock:
            return self._state

    @property
    def is_active(self) -> bool:
        return self.state is State.ACTIVE

    def finish(self) -> bool:
        with self._lock:
            if self._state is State.DONE:
                return False
            self._state = State.DONE
            return True

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.time())

    def __str__(self) -> str:
        minutes, seconds = divmod(int(self.remaining()), 60)
        lines = [f"**{self.problem.name}**"]
        if self.problem.description:
            lines.append(self.problem.description)
        lines.append(f"{len(self.problem.testcases)} test cases, time left: {minutes}m {seconds:02d}s")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"Challenge(problem={self.problem.name!r}, channel={self.channel!r}, state={self.state.value})"


class ChallengeRegistry:
    """One challenge slot per channel; the newest `create` wins."""

    def __init__(self, default_duration: float = DEFAULT_DURATION):
        self.default_duration = default_duration
        self._challenges: dict[Hashable, Challenge] = {}
        self._lock = threading.Lock()

    def create(self, channel: Hashable, problem: Problem, duration: float | None = None) -> Challenge:
        challenge = Challenge(problem, channel, self.default_duration if duration is None else duration)
        with self._lock:
            self._challenges[channel] = challenge
        return challenge

    def show(self, channel: Hashable) -> Challenge | None:
        with self._lock:
            return self._challenges.get(channel)

    def active_challenge(self, channel: Hashable) -> Challenge | None:
        challenge = self.show(channel)
        if challenge is None or not challenge.is_active:
            return None
        return challenge

    def require_active(self, channel: Hashable) -> Challenge:
        challenge = self.active_challenge(channel)
        if challenge is None:
            raise StateError(f"no active challenge in {channel}")
        return challenge

    def channels(self) -> list[Hashable]:
        with self._lock:
            return list(self._challenges)
