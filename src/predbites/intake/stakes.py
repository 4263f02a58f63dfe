"""Stake intake - the validation gate in front of the pool ledger."""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from typing import TYPE_CHECKING

import structlog

from predbites.errors import NotFound, PredictionError, PredictionLocked, PredictionNotOpen, UpstreamError
from predbites.ledger.odds import ZERO, calculate_odds, calculate_payout
from predbites.lifecycle.state_machine import effective_status, now_ms
from predbites.models import PredictionStatus, Stake, StakeReceipt
from predbites.storage import predictions as store

if TYPE_CHECKING:
    from predbites.collaborators.balance import BalanceProvider
    from predbites.config import Settings
    from predbites.ledger.pool import PoolLedger

log = structlog.get_logger(__name__)


class StakeIntakeService:
    """
    Checks amount, lock boundary and balance before handing the stake to the ledger.
    Client-side lock state is never trusted: the ledger re-checks status inside its
    transaction.
    """

    def __init__(
        self,
        ledger: PoolLedger,
        balances: BalanceProvider,
        settings: Settings,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.ledger = ledger
        self.balances = balances
        self.settings = settings
        self.clock = clock

    def available_balance(self, staker_id: str) -> Decimal:
        try:
            return Decimal(self.balances.get_balance(staker_id))
        except PredictionError:
            raise
        except Exception as e:
            log.error("balance_lookup_failed", staker_id=staker_id, error=str(e))
            raise UpstreamError("Balance service unavailable, try again shortly", {"staker_id": staker_id}) from e

    def check_open(self, prediction_id: str, outcome_id: str | None = None) -> None:
        with self.ledger.db.cursor() as conn:
            prediction = store.get_prediction(conn, prediction_id)
        if prediction is None:
            raise NotFound(f"Prediction not found: {prediction_id}", {"prediction_id": prediction_id})
        status = effective_status(prediction, self.clock())
        if status == PredictionStatus.LOCKED:
            raise PredictionLocked("Prediction is locked, staking has closed", status.value, {"locks_at": prediction.locks_at})
        if status != PredictionStatus.OPEN:
            raise PredictionNotOpen(f"Prediction is {status.value}", status.value)
        if outcome_id is not None and prediction.outcome(outcome_id) is None:
            raise NotFound(
                f"Outcome {outcome_id} does not belong to prediction {prediction_id}",
                {"outcome_id": outcome_id, "prediction_id": prediction_id},
            )

    def place_stake(self, prediction_id: str, outcome_id: str, staker_id: str, amount: object) -> StakeReceipt:
        """Validate, then record. Repeat stakes on the same outcome add to the staker's total."""
        value = self.ledger.validate_amount(amount)
        self.check_open(prediction_id, outcome_id)
        balance = self.available_balance(staker_id)
        stake = self.ledger.record_stake(prediction_id, outcome_id, staker_id, value, available_balance=balance)
        return self.receipt(prediction_id, outcome_id, staker_id, stake)

    def receipt(self, prediction_id: str, outcome_id: str, staker_id: str, stake: Stake) -> StakeReceipt:
        with self.ledger.db.cursor() as conn:
            prediction = store.get_prediction(conn, prediction_id)
            mine = store.get_stakes(conn, prediction_id, staker_id=staker_id, outcome_id=outcome_id)
        outcome = prediction.outcome(outcome_id)
        user_total = sum((s.amount for s in mine), ZERO)
        fee = self.settings.platform_fee_pct
        projected = calculate_payout(user_total, prediction.total_pool, outcome.pool, fee_pct=fee)
        odds = calculate_odds(prediction.total_pool, outcome.pool, fee_pct=fee, fallback=self.settings.odds_fallback)
        log.info(
            "stake_placed",
            prediction_id=prediction_id,
            outcome_id=outcome_id,
            staker_id=staker_id,
            amount=str(stake.amount),
            user_outcome_total=str(user_total),
            total_pool=str(prediction.total_pool),
        )
        return StakeReceipt(
            stake=stake,
            user_outcome_total=user_total,
            outcome_pool=outcome.pool,
            total_pool=prediction.total_pool,
            projected_payout=projected,
            odds=odds.multiplier,
        )
