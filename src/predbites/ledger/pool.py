"""Pool ledger - who staked how much on what, and the totals derived from it."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog

from predbites.errors import InsufficientBalance, InvalidAmount, NotFound, PredictionLocked, PredictionNotOpen
from predbites.ledger.odds import ZERO, calculate_odds, to_amount
from predbites.lifecycle.state_machine import effective_status, now_ms
from predbites.models import OutcomeOdds, Prediction, PredictionStatus, Stake
from predbites.storage import predictions as store

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from predbites.config import Settings
    from predbites.lifecycle.state_machine import LifecycleManager
    from predbites.storage.db import Database

log = structlog.get_logger(__name__)


class PoolLedger:
    """Single source of truth for stakes and pools. Owns the conservation invariant:
    sum(outcome pools) == prediction total pool == sum(stake amounts)."""

    def __init__(
        self,
        db: Database,
        lifecycle: LifecycleManager,
        settings: Settings,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.db = db
        self.lifecycle = lifecycle
        self.settings = settings
        self.clock = clock

    def validate_amount(self, amount: object, minimum: Decimal | None = None) -> Decimal:
        value = to_amount(amount)
        low = self.settings.min_stake if minimum is None else minimum
        high = self.settings.max_stake
        if value <= 0:
            raise InvalidAmount("Stake amount must be positive", {"amount": str(value)})
        if value < low:
            raise InvalidAmount(f"Minimum stake is {low} MEDALS", {"amount": str(value), "min_stake": str(low)})
        if value > high:
            raise InvalidAmount(f"Maximum stake is {high} MEDALS", {"amount": str(value), "max_stake": str(high)})
        return value

    def record_stake(
        self,
        prediction_id: str,
        outcome_id: str,
        staker_id: str,
        amount: object,
        available_balance: Decimal | None = None,
    ) -> Stake:
        """Append a stake and increment outcome and prediction pools in one transaction."""
        value = self.validate_amount(amount)
        if available_balance is not None and available_balance < value:
            raise InsufficientBalance(available_balance, value)
        with self.db.transaction() as conn:
            prediction = self.lifecycle.load(conn, prediction_id)
            return self.apply_stake(conn, prediction, outcome_id, staker_id, value)

    def apply_stake(
        self,
        conn: DuckDBPyConnection,
        prediction: Prediction,
        outcome_id: str,
        staker_id: str,
        value: Decimal,
    ) -> Stake:
        """Stake write inside the caller's transaction. Status is re-checked here."""
        now = self.clock()
        status = effective_status(prediction, now)
        if status != PredictionStatus.OPEN:
            if status == PredictionStatus.LOCKED:
                raise PredictionLocked(
                    "Prediction is locked, staking has closed",
                    status.value,
                    {"locks_at": prediction.locks_at},
                )
            raise PredictionNotOpen(f"Prediction is {status.value}", status.value)
        if prediction.outcome(outcome_id) is None:
            raise NotFound(
                f"Outcome {outcome_id} does not belong to prediction {prediction.id}",
                {"outcome_id": outcome_id, "prediction_id": prediction.id},
            )
        new_backer = not store.get_stakes(conn, prediction.id, staker_id=staker_id, outcome_id=outcome_id)
        stake = Stake(
            id=str(uuid.uuid4()),
            prediction_id=prediction.id,
            outcome_id=outcome_id,
            staker_id=staker_id,
            amount=value,
            created_at=now,
        )
        store.insert_stake(conn, stake)
        store.increment_pools(conn, prediction.id, outcome_id, value, new_backer)
        log.info(
            "stake_recorded",
            prediction_id=prediction.id,
            outcome_id=outcome_id,
            staker_id=staker_id,
            amount=str(value),
            top_up=not new_backer,
        )
        return stake

    def _get(self, conn: DuckDBPyConnection, prediction_id: str) -> Prediction:
        prediction = store.get_prediction(conn, prediction_id)
        if prediction is None:
            raise NotFound(f"Prediction not found: {prediction_id}", {"prediction_id": prediction_id})
        return prediction

    def compute_odds(self, prediction_id: str) -> list[OutcomeOdds]:
        """Display odds per outcome. Never used for payouts."""
        with self.db.cursor() as conn:
            prediction = self._get(conn, prediction_id)
        return odds_for(prediction, self.settings)

    def total_user_stake(self, prediction_id: str, user_id: str, outcome_id: str | None = None) -> Decimal:
        with self.db.cursor() as conn:
            stakes = store.get_stakes(conn, prediction_id, staker_id=user_id, outcome_id=outcome_id)
        return sum((s.amount for s in stakes), ZERO)

    def user_payout_sum(self, prediction_id: str, user_id: str) -> Decimal:
        with self.db.cursor() as conn:
            stakes = store.get_stakes(conn, prediction_id, staker_id=user_id)
        return sum((s.payout for s in stakes if s.payout is not None), ZERO)

    def pool_totals(self, prediction_id: str) -> dict[str, Decimal]:
        with self.db.cursor() as conn:
            self._get(conn, prediction_id)
            return store.pool_totals(conn, prediction_id)

    def check_conservation(self, prediction_id: str) -> bool:
        totals = self.pool_totals(prediction_id)
        return totals["total_pool"] == totals["outcome_pools"] == totals["stakes"]


def odds_for(prediction: Prediction, settings: Settings) -> list[OutcomeOdds]:
    out = []
    for outcome in prediction.outcomes:
        odds = calculate_odds(
            prediction.total_pool,
            outcome.pool,
            fee_pct=settings.platform_fee_pct,
            fallback=settings.odds_fallback,
        )
        out.append(
            OutcomeOdds(
                outcome_id=outcome.id,
                label=outcome.label,
                pool=outcome.pool,
                multiplier=odds.multiplier,
                percentage=odds.percentage,
                implied_probability=odds.implied_probability,
            )
        )
    return out
