"""Shared fixtures: temp DuckDB file, controllable clock, static balances, wired service."""

from __future__ import annotations

import shutil
import tempfile
from decimal import Decimal
from pathlib import Path

import pytest

from predbites.collaborators.balance import StaticBalanceProvider
from predbites.config import Settings
from predbites.service import PredictionService
from predbites.storage import Database

START_MS = 1_767_225_600_000  # 2026-01-01T00:00:00Z
MINUTE = 60_000
HOUR = 60 * MINUTE


class FakeClock:
    """Callable ms-epoch clock the tests move by hand."""

    def __init__(self, now: int = START_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def make_settings(**overrides) -> Settings:
    raw = {
        "storage": {"db_path": ":memory:"},
        "stakes": {"min_stake": 10, "max_stake": 1000, "min_creator_stake": 10},
        "predictions": {
            "min_outcomes": 2,
            "max_outcomes": 4,
            "max_title_length": 200,
            "max_outcome_label_length": 50,
            "min_lock_minutes": 15,
            "max_lock_days": 30,
            "max_predictions_per_day": 5,
            "zero_pool_policy": "refund",
        },
        "fees": {"platform_fee_pct": 0, "burn_split": 0.5, "reward_split": 0.5},
        "auth": {"admin_accounts": ["sportsblock"]},
        "balances": {"provider": "static"},
    }
    for section, values in overrides.items():
        raw[section] = {**raw.get(section, {}), **values}
    return Settings.from_dict(raw)


@pytest.fixture
def temp_db_path():
    tmp = tempfile.mkdtemp()
    path = Path(tmp) / "test.duckdb"
    yield path
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def db(temp_db_path):
    database = Database(temp_db_path)
    yield database
    database.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def balances():
    return StaticBalanceProvider(
        {name: Decimal("5000") for name in ("alice", "bob", "carol", "dave", "erin", "creator")}
    )


@pytest.fixture
def service(db, settings, balances, clock):
    return PredictionService(db, settings, balances, clock=clock)


@pytest.fixture
def make_prediction(service, clock):
    """Create an OPEN prediction locking in one hour; returns the view."""

    def _make(outcomes=("Home", "Away"), creator="creator", title="Who wins the derby?", locks_in=HOUR, **kwargs):
        return service.create_prediction(creator, title, list(outcomes), clock() + locks_in, **kwargs)

    return _make


@pytest.fixture
def build_service(db, balances, clock):
    """Service over the same database with settings overrides, e.g. fees={...}."""

    def _build(**overrides):
        return PredictionService(db, make_settings(**overrides), balances, clock=clock)

    return _build
