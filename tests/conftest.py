# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures for the Processly SDK test suite.

- FakeClock: manually advanced monotonic clock for limiter/breaker/latency
- RecordingSleep: async sleep stand-in that records requested delays
- RecordingMetrics: MetricsSink that keeps every tracked event
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

import pytest

from processly_sdk.generation.generation_base import GenerationRequest


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self, clock: Optional[FakeClock] = None) -> None:
        self.delays: List[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


class RecordingMetrics:
    def __init__(self) -> None:
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def track(self, *, event: str, properties: Optional[Mapping[str, Any]] = None) -> None:
        self.events.append((event, dict(properties or {})))

    def named(self, event: str) -> List[Dict[str, Any]]:
        return [props for name, props in self.events if name == event]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()


@pytest.fixture
def request_notes() -> GenerationRequest:
    return GenerationRequest(
        raw_text="mix the batter, preheat the oven then bake for 20 minutes",
        title_hint="Cupcakes",
    )
