"""Settlement engine - computes and persists final payouts exactly once per prediction."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

import structlog

from predbites.errors import ValidationError, ZeroPoolSettlement
from predbites.ledger.odds import ZERO, calculate_refund, calculate_settlement
from predbites.lifecycle.state_machine import now_ms
from predbites.models import MatchResult, Prediction, PredictionStatus, SettlementResult, Stake
from predbites.settlement.auto_settle import resolve_winning_outcome
from predbites.storage import predictions as store

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from predbites.config import Settings
    from predbites.lifecycle.state_machine import LifecycleManager
    from predbites.storage.db import Database

log = structlog.get_logger(__name__)

REFUND_NO_BACKERS = "no backers on winning outcome"
REFUND_NO_OPPOSITION = "no opposing stakes"


class SettlementEngine:
    """
    settle() and void() each run as one write transaction: the LOCKED -> SETTLING
    compare-and-swap, the payout writes and the terminal status commit together or
    not at all. A duplicate concurrent call finds the status no longer LOCKED and
    fails with InvalidTransition without touching any stake.
    """

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

    def settle(self, prediction_id: str, winning_outcome_id: str, actor: str | None) -> SettlementResult:
        self.lifecycle.authorize(actor, prediction_id)
        with self.db.transaction() as conn:
            prediction = self.lifecycle.load(conn, prediction_id)
            self.lifecycle.begin_settling(conn, prediction)
            if prediction.outcome(winning_outcome_id) is None:
                raise ValidationError(
                    f"Outcome {winning_outcome_id} does not belong to prediction {prediction_id}",
                    {"winning_outcome_id": winning_outcome_id},
                )
            stakes = store.get_stakes(conn, prediction_id)
            winning_pool = sum((s.amount for s in stakes if s.outcome_id == winning_outcome_id), ZERO)

            if winning_pool <= 0:
                if self.settings.zero_pool_policy == "reject":
                    raise ZeroPoolSettlement(
                        "Nobody staked on the winning outcome; void the prediction instead",
                        {"winning_outcome_id": winning_outcome_id, "total_pool": str(prediction.total_pool)},
                    )
                return self._refund(conn, prediction, stakes, actor, REFUND_NO_BACKERS, winning_outcome_id)
            if all(s.outcome_id == winning_outcome_id for s in stakes):
                return self._refund(conn, prediction, stakes, actor, REFUND_NO_OPPOSITION, winning_outcome_id)

            result = calculate_settlement(
                prediction_id,
                stakes,
                winning_outcome_id,
                prediction.total_pool,
                fee_pct=self.settings.platform_fee_pct,
                burn_split=self.settings.burn_split,
            )
            store.set_stake_payouts(conn, [(p.stake_id, p.payout) for p in result.payouts])
            store.mark_winner(conn, winning_outcome_id)
            self.lifecycle.transition(
                conn,
                prediction,
                PredictionStatus.SETTLED,
                winning_outcome_id=winning_outcome_id,
                settled_at=self.clock(),
                settled_by=actor,
                platform_cut=result.platform_fee,
                burned_amount=result.burn_amount,
                reward_pool_amount=result.reward_amount,
            )
        log.info(
            "prediction_settled",
            prediction_id=prediction_id,
            winning_outcome_id=winning_outcome_id,
            total_pool=str(result.total_pool),
            total_paid=str(result.total_paid),
            platform_fee=str(result.platform_fee),
            payout_count=sum(1 for p in result.payouts if p.payout > 0),
            settled_by=actor,
        )
        return result

    def void(self, prediction_id: str, reason: str, actor: str | None) -> SettlementResult:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to void a prediction", {"field": "reason"})
        self.lifecycle.authorize(actor, prediction_id)
        with self.db.transaction() as conn:
            prediction = self.lifecycle.load(conn, prediction_id)
            self.lifecycle.begin_settling(conn, prediction)
            stakes = store.get_stakes(conn, prediction_id)
            result = calculate_refund(prediction_id, stakes, PredictionStatus.VOID, reason)
            store.set_stake_payouts(conn, [(p.stake_id, p.payout) for p in result.payouts])
            self.lifecycle.transition(
                conn,
                prediction,
                PredictionStatus.VOID,
                void_reason=reason,
                settled_at=self.clock(),
                settled_by=actor,
            )
        log.info(
            "prediction_voided",
            prediction_id=prediction_id,
            reason=reason,
            stake_count=len(stakes),
            refunded=str(result.total_paid),
            voided_by=actor,
        )
        return result

    def auto_settle(self, prediction_id: str, match: MatchResult, actor: str | None) -> SettlementResult:
        """Settle from a finished match when exactly one outcome label matches the result."""
        with self.db.cursor() as conn:
            outcomes = store.get_outcomes(conn, prediction_id)
        winner = resolve_winning_outcome(match, outcomes)
        if winner is None:
            log.info("auto_settle_unresolved", prediction_id=prediction_id, match_status=match.status)
            raise ValidationError(
                "Match result does not map to exactly one outcome; settle manually",
                {"match_status": match.status},
            )
        return self.settle(prediction_id, winner, actor)

    def _refund(
        self,
        conn: DuckDBPyConnection,
        prediction: Prediction,
        stakes: list[Stake],
        actor: str | None,
        reason: str,
        winning_outcome_id: str,
    ) -> SettlementResult:
        result = calculate_refund(prediction.id, stakes, PredictionStatus.REFUNDED, reason)
        result.winning_outcome_id = winning_outcome_id
        store.set_stake_payouts(conn, [(p.stake_id, p.payout) for p in result.payouts])
        self.lifecycle.transition(
            conn,
            prediction,
            PredictionStatus.REFUNDED,
            winning_outcome_id=winning_outcome_id,
            void_reason=reason,
            settled_at=self.clock(),
            settled_by=actor,
        )
        log.info(
            "prediction_refunded",
            prediction_id=prediction.id,
            reason=reason,
            stake_count=len(stakes),
            refunded=str(result.total_paid),
        )
        return result
