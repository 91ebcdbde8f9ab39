"""Shared fixtures for unit and integration tests."""

import random
from collections.abc import Callable

import pytest

from tests.helpers.fakes import FakeClock, FakeConnection
from voicepair.config import VoicePairConfig
from voicepair.engine import PairingEngine
from voicepair.metrics import MetricsCollector


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def engine(clock: FakeClock, metrics: MetricsCollector) -> PairingEngine:
    """Engine with deterministic randomness, time and session ids."""
    counter = iter(range(1, 10_000))
    return PairingEngine(
        VoicePairConfig(),
        rng=random.Random(1234),
        clock=clock,
        id_factory=lambda: f"s{next(counter)}",
        metrics=metrics,
    )


@pytest.fixture
def connect(engine: PairingEngine) -> Callable[..., tuple[str, FakeConnection]]:
    """Register a fake client and return (session_id, connection)."""

    def _connect(region: str = "US") -> tuple[str, FakeConnection]:
        connection = FakeConnection()
        session_id = engine.connect(connection, region)
        return session_id, connection

    return _connect
