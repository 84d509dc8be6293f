from __future__ import annotations

import asyncio

from fakes import FakeClock, seq

from lotl.controller.detectors import StabilityDetector


def _sampler(values):
    nxt = seq(values)

    async def sample():
        return nxt()

    return sample


def test_settles_after_three_identical_samples() -> None:
    detector = StabilityDetector(
        sample=_sampler(["Hello", "Hello", "Hello there", "Hello there", "Hello there", "Hello there"]),
        stable_samples=3,
        max_polls=60,
        clock=FakeClock(),
    )
    outcome = asyncio.run(detector.wait())
    assert outcome.polls == 6
    assert outcome.stable is True
    assert outcome.text == "Hello there"


def test_empty_samples_never_count_as_stable() -> None:
    detector = StabilityDetector(sample=_sampler([None, "", None]), max_polls=8, clock=FakeClock())
    outcome = asyncio.run(detector.wait())
    assert outcome.stable is False
    assert outcome.text == ""
    assert outcome.polls == 8


def test_ceiling_returns_last_sample_instead_of_failing() -> None:
    counter = {"n": 0}

    async def growing():
        counter["n"] += 1
        return "x" * counter["n"]

    clock = FakeClock()
    outcome = asyncio.run(StabilityDetector(sample=growing, max_polls=5, clock=clock).wait())
    assert outcome.stable is False
    assert outcome.text == "xxxxx"
    assert clock.now == 5.0
