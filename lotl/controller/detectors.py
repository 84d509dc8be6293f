"""
Completion and stability detection.

The target UIs expose no "reply finished" signal. Two polling state machines
collapse the available racy signals into one decision:

- CompletionDetector: a new reply exists (turn count grew by the platform's delta)
  and the UI reports it is no longer generating. Turn count alone can be satisfied
  by an empty pre-rendered turn; the busy flag alone lags right after submission.
- StabilityDetector: the extracted text stopped changing for N consecutive polls.

Both take an injectable Clock so tests advance virtual time instead of sleeping.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .errors import ResponseTimeout

logger = logging.getLogger("lotl.controller.detect")


class Clock(Protocol):
    def monotonic(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class CompletionState(str, Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    TURNS_SATISFIED = "turns_satisfied"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class CompletionOutcome:
    state: CompletionState
    polls: int
    turns_before: int
    turns_now: int
    generating: bool
    elapsed: float


class CompletionDetector:
    def __init__(
        self,
        *,
        count_turns: Callable[[], Awaitable[int]],
        is_busy: Callable[[], Awaitable[bool]],
        required_delta: int,
        platform: str = "",
        poll_interval: float = 1.0,
        max_polls: int = 180,
        clock: Clock | None = None,
        progress_every: int = 10,
    ) -> None:
        self._count_turns = count_turns
        self._is_busy = is_busy
        self.required_delta = max(1, int(required_delta))
        self.platform = platform
        self.poll_interval = poll_interval
        self.max_polls = max(1, int(max_polls))
        self.clock = clock or SystemClock()
        self.progress_every = progress_every
        self.state = CompletionState.IDLE

    async def wait(self, turns_before: int) -> CompletionOutcome:
        """Poll until the new reply is complete; raise ResponseTimeout at the ceiling."""
        self.state = CompletionState.SUBMITTED
        started = self.clock.monotonic()
        target = turns_before + self.required_delta
        turns_now = turns_before
        generating = True

        for poll in range(1, self.max_polls + 1):
            await self.clock.sleep(self.poll_interval)
            turns_now = int(await self._count_turns())
            generating = bool(await self._is_busy())

            if turns_now >= target and not generating:
                self.state = CompletionState.TURNS_SATISFIED
                logger.info(
                    "completion platform=%s polls=%d turns=%d->%d", self.platform, poll, turns_before, turns_now
                )
                return CompletionOutcome(
                    state=self.state,
                    polls=poll,
                    turns_before=turns_before,
                    turns_now=turns_now,
                    generating=generating,
                    elapsed=self.clock.monotonic() - started,
                )

            if self.progress_every and poll % self.progress_every == 0:
                logger.info(
                    "still_waiting platform=%s poll=%d turns=%d target=%d generating=%s",
                    self.platform,
                    poll,
                    turns_now,
                    target,
                    generating,
                )

        self.state = CompletionState.TIMED_OUT
        elapsed = self.clock.monotonic() - started
        raise ResponseTimeout(
            platform=self.platform,
            reason=f"Timeout waiting for response ({elapsed:.0f}s)",
            suggestion="Check the tab for an error banner or a stuck generation, then retry",
            details={
                "turnsBefore": turns_before,
                "turnsNow": turns_now,
                "requiredDelta": self.required_delta,
                "generating": generating,
                "polls": self.max_polls,
            },
        )


@dataclass(frozen=True)
class StabilityOutcome:
    text: str
    stable: bool
    polls: int


class StabilityDetector:
    """Declare the stream settled after `stable_samples` consecutive repeats of a non-empty sample.

    Never fails: at the ceiling the last sample is returned with stable=False.
    """

    def __init__(
        self,
        *,
        sample: Callable[[], Awaitable[str | None]],
        platform: str = "",
        poll_interval: float = 1.0,
        max_polls: int = 60,
        stable_samples: int = 3,
        clock: Clock | None = None,
    ) -> None:
        self._sample = sample
        self.platform = platform
        self.poll_interval = poll_interval
        self.max_polls = max(1, int(max_polls))
        self.stable_samples = max(1, int(stable_samples))
        self.clock = clock or SystemClock()

    async def wait(self) -> StabilityOutcome:
        last = ""
        repeats = 0
        for poll in range(1, self.max_polls + 1):
            await self.clock.sleep(self.poll_interval)
            current = (await self._sample()) or ""

            if current and current == last:
                repeats += 1
                if repeats >= self.stable_samples:
                    logger.info("stream_settled platform=%s polls=%d chars=%d", self.platform, poll, len(current))
                    return StabilityOutcome(text=current, stable=True, polls=poll)
            else:
                repeats = 0
                last = current

        logger.warning("stream_never_settled platform=%s polls=%d chars=%d", self.platform, self.max_polls, len(last))
        return StabilityOutcome(text=last, stable=False, polls=self.max_polls)
