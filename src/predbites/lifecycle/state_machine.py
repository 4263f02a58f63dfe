"""Prediction lifecycle: OPEN -> LOCKED -> SETTLING -> SETTLED | VOID | REFUNDED.

Lock transitions are evaluated lazily: a prediction whose ``locks_at`` has passed
reads as LOCKED and is persisted as LOCKED the next time anything touches it.
There is no background timer.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import structlog

from predbites.errors import Forbidden, InvalidTransition, NotFound, PredictionError, Unauthorized, UpstreamError
from predbites.models import Countdown, Prediction, PredictionStatus
from predbites.storage import predictions as store

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

    from predbites.collaborators.auth import Authorizer
    from predbites.storage.db import Database

log = structlog.get_logger(__name__)

S = PredictionStatus

TRANSITIONS: dict[PredictionStatus, frozenset[PredictionStatus]] = {
    S.OPEN: frozenset({S.LOCKED}),
    S.LOCKED: frozenset({S.SETTLING}),
    S.SETTLING: frozenset({S.SETTLED, S.VOID, S.REFUNDED}),
    S.SETTLED: frozenset(),
    S.VOID: frozenset(),
    S.REFUNDED: frozenset(),
}


def now_ms() -> int:
    return int(time.time() * 1000)


def can_transition(current: PredictionStatus, target: PredictionStatus) -> bool:
    return target in TRANSITIONS[current]


def assert_transition(current: PredictionStatus, target: PredictionStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value)


def effective_status(prediction: Prediction, now: int) -> PredictionStatus:
    """Status with the lock rule applied: OPEN past locks_at is LOCKED."""
    if prediction.status == S.OPEN and now >= prediction.locks_at:
        return S.LOCKED
    return prediction.status


def accepts_stakes(prediction: Prediction, now: int) -> bool:
    return prediction.status == S.OPEN and now < prediction.locks_at


def remaining(lock_time: int, now: int) -> Countdown:
    """Countdown to lock_time (both ms epoch). Presentation only."""
    remaining_ms = max(0, lock_time - now)
    total_sec = remaining_ms // 1000
    days, rest = divmod(total_sec, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    return Countdown(
        remaining_ms=remaining_ms,
        days=days,
        hours=hours,
        minutes=minutes,
        seconds=seconds,
        locked=remaining_ms == 0,
    )


class LifecycleManager:
    """Applies lifecycle transitions against storage."""

    def __init__(
        self,
        db: Database,
        authorizer: Authorizer,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.db = db
        self.authorizer = authorizer
        self.clock = clock

    def authorize(self, actor: str | None, prediction_id: str) -> None:
        """Creator or admin only. Raises before anything is written."""
        if not actor:
            raise Unauthorized()
        with self.db.cursor() as conn:
            if store.get_prediction(conn, prediction_id) is None:
                raise NotFound(f"Prediction not found: {prediction_id}", {"prediction_id": prediction_id})
        try:
            allowed = self.authorizer.is_creator_or_admin(actor, prediction_id)
        except PredictionError:
            raise
        except Exception as e:
            log.error("authorization_lookup_failed", actor=actor, prediction_id=prediction_id, error=str(e))
            raise UpstreamError("Authorization service unavailable") from e
        if not allowed:
            raise Forbidden(
                "Only the creator or an admin can do this",
                {"actor": actor, "prediction_id": prediction_id},
            )

    def sync_expired_locks(self, conn: DuckDBPyConnection, now: int | None = None) -> list[str]:
        """Persist OPEN -> LOCKED for predictions past their lock time."""
        locked = store.lock_expired(conn, self.clock() if now is None else now)
        if locked:
            log.info("predictions_auto_locked", count=len(locked), prediction_ids=locked)
        return locked

    def load(self, conn: DuckDBPyConnection, prediction_id: str) -> Prediction:
        """Load a prediction inside a write transaction with expired locks applied."""
        prediction = store.get_prediction(conn, prediction_id)
        if prediction is None:
            raise NotFound(f"Prediction not found: {prediction_id}", {"prediction_id": prediction_id})
        if prediction.status == S.OPEN and effective_status(prediction, self.clock()) == S.LOCKED:
            self.transition(conn, prediction, S.LOCKED)
        return prediction

    def transition(
        self,
        conn: DuckDBPyConnection,
        prediction: Prediction,
        target: PredictionStatus,
        **fields: Any,
    ) -> Prediction:
        """Compare-and-swap the status from prediction.status to target, plus extra columns."""
        current = prediction.status
        assert_transition(current, target)
        if not store.compare_and_set_status(conn, prediction.id, current, target):
            fresh = store.get_prediction(conn, prediction.id)
            actual = fresh.status.value if fresh else "MISSING"
            raise InvalidTransition(actual, target.value)
        if fields:
            store.update_prediction_fields(conn, prediction.id, **fields)
        prediction.status = target
        for key, value in fields.items():
            setattr(prediction, key, value)
        log.debug("prediction_transition", prediction_id=prediction.id, current=current.value, target=target.value)
        return prediction

    def lock(self, prediction_id: str, actor: str | None) -> Prediction:
        """Manual early lock by creator/admin. Stakes are refused from this point."""
        self.authorize(actor, prediction_id)
        with self.db.transaction() as conn:
            prediction = self.load(conn, prediction_id)
            if prediction.status != S.LOCKED:
                self.transition(conn, prediction, S.LOCKED)
            log.info("prediction_locked", prediction_id=prediction_id, actor=actor)
        return prediction

    def begin_settling(self, conn: DuckDBPyConnection, prediction: Prediction) -> Prediction:
        """LOCKED -> SETTLING. A concurrent second caller gets InvalidTransition."""
        if prediction.status != S.LOCKED:
            raise InvalidTransition(prediction.status.value, S.SETTLING.value)
        return self.transition(conn, prediction, S.SETTLING)
