"""Prediction service - the single entry point the API and CLI talk to."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog

from predbites.collaborators.auth import AllowListAuthorizer
from predbites.collaborators.balance import BalanceProvider, build_balance_provider
from predbites.errors import (
    InsufficientBalance,
    NotFound,
    NotModifiable,
    RateLimited,
    Unauthorized,
    ValidationError,
)
from predbites.intake import StakeIntakeService
from predbites.ledger import PoolLedger
from predbites.lifecycle import LifecycleManager, now_ms
from predbites.models import (
    MatchResult,
    Outcome,
    OutcomeOdds,
    Prediction,
    PredictionStatus,
    SettlementResult,
    StakeReceipt,
)
from predbites.serialize import PredictionView, serialize_prediction
from predbites.settlement import SettlementEngine
from predbites.storage import Database
from predbites.storage import predictions as store
from predbites.storage.leaderboard import SORT_COLUMNS, prediction_leaderboard

if TYPE_CHECKING:
    from predbites.config import Settings

log = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 50
DAY_MS = 86_400_000
LEADERBOARD_PERIODS = {"all": None, "week": 7 * DAY_MS, "month": 30 * DAY_MS}


def utc_day_start(now: int) -> int:
    day = datetime.fromtimestamp(now / 1000, tz=timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return int(day.timestamp() * 1000)


def _parse_cursor(cursor: str) -> tuple[int, str]:
    """Split a "<sort key>:<prediction id>" listing cursor."""
    key, sep, last_id = cursor.partition(":")
    try:
        if not sep or not last_id:
            raise ValueError(cursor)
        return int(key), last_id
    except ValueError:
        raise ValidationError(f"Malformed cursor: {cursor}", {"field": "cursor"}) from None


class PredictionService:
    """Wires storage, lifecycle, ledger, intake and settlement behind one facade."""

    def __init__(
        self,
        db: Database,
        settings: Settings,
        balances: BalanceProvider,
        authorizer: AllowListAuthorizer | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.db = db
        self.settings = settings
        self.balances = balances
        self.authorizer = authorizer or AllowListAuthorizer(db, settings.admin_accounts)
        self.clock = clock
        self.lifecycle = LifecycleManager(db, self.authorizer, clock)
        self.ledger = PoolLedger(db, self.lifecycle, settings, clock)
        self.intake = StakeIntakeService(self.ledger, balances, settings, clock)
        self.engine = SettlementEngine(db, self.lifecycle, settings, clock)

    @classmethod
    def from_settings(cls, settings: Settings, db_path: str | None = None) -> PredictionService:
        db = Database(db_path or settings.db_path)
        return cls(db, settings, build_balance_provider(settings))

    def close(self) -> None:
        close = getattr(self.balances, "close", None)
        if close is not None:
            close()
        self.db.close()

    # --- validation helpers ---

    def _clean_title(self, title: str | None) -> str:
        title = (title or "").strip()
        if not title:
            raise ValidationError("Title is required", {"field": "title"})
        if len(title) > self.settings.max_title_length:
            raise ValidationError(
                f"Title must be at most {self.settings.max_title_length} characters",
                {"field": "title", "length": len(title)},
            )
        return title

    def _clean_labels(self, labels: list[str] | None) -> list[str]:
        labels = [(label or "").strip() for label in labels or []]
        low, high = self.settings.min_outcomes, self.settings.max_outcomes
        if not low <= len(labels) <= high:
            raise ValidationError(
                f"A prediction needs between {low} and {high} outcomes",
                {"field": "outcomes", "count": len(labels)},
            )
        max_len = self.settings.max_outcome_label_length
        for label in labels:
            if not label:
                raise ValidationError("Outcome labels cannot be empty", {"field": "outcomes"})
            if len(label) > max_len:
                raise ValidationError(
                    f"Outcome labels must be at most {max_len} characters",
                    {"field": "outcomes", "label": label},
                )
        if len({label.lower() for label in labels}) != len(labels):
            raise ValidationError("Outcome labels must be distinct", {"field": "outcomes"})
        return labels

    def _check_lock_time(self, locks_at: int, now: int) -> int:
        earliest = now + self.settings.min_lock_minutes * 60_000
        latest = now + self.settings.max_lock_days * DAY_MS
        if locks_at < earliest:
            raise ValidationError(
                f"Lock time must be at least {self.settings.min_lock_minutes} minutes in the future",
                {"field": "locks_at", "locks_at": locks_at, "earliest": earliest},
            )
        if locks_at > latest:
            raise ValidationError(
                f"Lock time must be within {self.settings.max_lock_days} days",
                {"field": "locks_at", "locks_at": locks_at, "latest": latest},
            )
        return locks_at

    def _is_admin(self, user_id: str | None) -> bool:
        return bool(user_id) and self.authorizer.is_admin(user_id)

    # --- creation and editing ---

    def create_prediction(
        self,
        creator_id: str | None,
        title: str,
        outcomes: list[str],
        locks_at: int,
        sport_category: str | None = None,
        match_reference: str | None = None,
        creator_stake: tuple[int, Any] | None = None,
    ) -> PredictionView:
        """
        Create an OPEN prediction. creator_stake is (outcome_index, amount); when given, the
        stake is recorded in the same transaction as the prediction row.
        """
        if not creator_id:
            raise Unauthorized()
        now = self.clock()
        title = self._clean_title(title)
        labels = self._clean_labels(outcomes)
        self._check_lock_time(int(locks_at), now)

        stake_index: int | None = None
        stake_amount: Decimal | None = None
        if creator_stake is not None:
            stake_index, raw_amount = creator_stake
            if not 0 <= stake_index < len(labels):
                raise ValidationError(
                    "Creator stake must name one of the outcomes",
                    {"field": "creator_stake", "outcome_index": stake_index},
                )
            stake_amount = self.ledger.validate_amount(raw_amount, minimum=self.settings.min_creator_stake)
            balance = self.intake.available_balance(creator_id)
            if balance < stake_amount:
                raise InsufficientBalance(balance, stake_amount)

        prediction_id = str(uuid.uuid4())
        prediction = Prediction(
            id=prediction_id,
            title=title,
            creator_id=creator_id,
            sport_category=sport_category,
            match_reference=match_reference,
            locks_at=int(locks_at),
            created_at=now,
            outcomes=[
                Outcome(id=str(uuid.uuid4()), prediction_id=prediction_id, position=i, label=label)
                for i, label in enumerate(labels)
            ],
        )
        with self.db.transaction() as conn:
            created_today = store.count_created_since(conn, creator_id, utc_day_start(now))
            if created_today >= self.settings.max_predictions_per_day:
                raise RateLimited(
                    f"At most {self.settings.max_predictions_per_day} predictions per day",
                    {"creator_id": creator_id, "created_today": created_today},
                )
            store.insert_prediction(conn, prediction)
            if stake_index is not None:
                self.ledger.apply_stake(conn, prediction, prediction.outcomes[stake_index].id, creator_id, stake_amount)
        log.info(
            "prediction_created",
            prediction_id=prediction_id,
            creator_id=creator_id,
            outcomes=len(labels),
            locks_at=prediction.locks_at,
            creator_stake=str(stake_amount) if stake_amount is not None else None,
        )
        return self.get_prediction(prediction_id, viewer=creator_id)

    def edit_prediction(
        self,
        prediction_id: str,
        actor: str | None,
        *,
        title: str | None = None,
        outcomes: list[str] | None = None,
        locks_at: int | None = None,
        sport_category: str | None = None,
        match_reference: str | None = None,
    ) -> PredictionView:
        """Edits are allowed only while OPEN and before the first stake."""
        self.lifecycle.authorize(actor, prediction_id)
        now = self.clock()
        fields: dict[str, Any] = {}
        if title is not None:
            fields["title"] = self._clean_title(title)
        if locks_at is not None:
            fields["locks_at"] = self._check_lock_time(int(locks_at), now)
        if sport_category is not None:
            fields["sport_category"] = sport_category
        if match_reference is not None:
            fields["match_reference"] = match_reference
        labels = self._clean_labels(outcomes) if outcomes is not None else None

        with self.db.transaction() as conn:
            prediction = self.lifecycle.load(conn, prediction_id)
            if prediction.status != PredictionStatus.OPEN:
                raise NotModifiable(
                    f"Prediction is {prediction.status.value} and can no longer be edited",
                    {"status": prediction.status.value},
                )
            if prediction.stake_count > 0:
                raise NotModifiable(
                    "Prediction cannot be edited once it has stakes",
                    {"stake_count": prediction.stake_count},
                )
            store.update_prediction_fields(conn, prediction_id, **fields)
            if labels is not None:
                if len(labels) == len(prediction.outcomes):
                    for outcome, label in zip(prediction.outcomes, labels):
                        if outcome.label != label:
                            store.relabel_outcome(conn, outcome.id, label)
                else:
                    store.replace_outcomes(
                        conn,
                        prediction_id,
                        [
                            Outcome(id=str(uuid.uuid4()), prediction_id=prediction_id, position=i, label=label)
                            for i, label in enumerate(labels)
                        ],
                    )
        log.info("prediction_edited", prediction_id=prediction_id, actor=actor, fields=sorted(fields), outcomes=labels is not None)
        return self.get_prediction(prediction_id, viewer=actor)

    def delete_prediction(self, prediction_id: str, actor: str | None) -> None:
        self.lifecycle.authorize(actor, prediction_id)
        with self.db.transaction() as conn:
            prediction = self.lifecycle.load(conn, prediction_id)
            if prediction.status != PredictionStatus.OPEN or prediction.total_pool > 0 or prediction.stake_count > 0:
                raise NotModifiable(
                    "Only an OPEN prediction with no stakes can be deleted",
                    {"status": prediction.status.value, "total_pool": str(prediction.total_pool)},
                )
            store.delete_prediction(conn, prediction_id)
        log.info("prediction_deleted", prediction_id=prediction_id, actor=actor)

    # --- staking and lifecycle ---

    def place_stake(self, prediction_id: str, outcome_id: str, staker_id: str | None, amount: Any) -> StakeReceipt:
        if not staker_id:
            raise Unauthorized()
        return self.intake.place_stake(prediction_id, outcome_id, staker_id, amount)

    def lock_prediction(self, prediction_id: str, actor: str | None) -> PredictionView:
        self.lifecycle.lock(prediction_id, actor)
        return self.get_prediction(prediction_id, viewer=actor)

    def settle_prediction(self, prediction_id: str, winning_outcome_id: str, actor: str | None) -> SettlementResult:
        return self.engine.settle(prediction_id, winning_outcome_id, actor)

    def void_prediction(self, prediction_id: str, reason: str, actor: str | None) -> SettlementResult:
        return self.engine.void(prediction_id, reason, actor)

    def auto_settle_prediction(self, prediction_id: str, match: MatchResult, actor: str | None) -> SettlementResult:
        return self.engine.auto_settle(prediction_id, match, actor)

    # --- reads ---

    def _sync_locks(self) -> None:
        with self.db.transaction() as conn:
            self.lifecycle.sync_expired_locks(conn)

    def get_prediction(self, prediction_id: str, viewer: str | None = None) -> PredictionView:
        with self.db.cursor() as conn:
            prediction = store.get_prediction(conn, prediction_id)
            if prediction is None:
                raise NotFound(f"Prediction not found: {prediction_id}", {"prediction_id": prediction_id})
            stakes = store.get_stakes(conn, prediction_id)
        return serialize_prediction(
            prediction,
            stakes,
            self.settings,
            self.clock(),
            viewer=viewer,
            viewer_is_admin=self._is_admin(viewer),
        )

    def list_predictions(
        self,
        *,
        status: PredictionStatus | str | None = None,
        sport: str | None = None,
        creator: str | None = None,
        cursor: str | None = None,
        limit: int = 20,
        viewer: str | None = None,
    ) -> tuple[list[PredictionView], str | None]:
        """One page of predictions plus the cursor for the next page (None on the last)."""
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", {"field": "limit", "limit": limit})
        if status is not None and not isinstance(status, PredictionStatus):
            try:
                status = PredictionStatus(str(status).upper())
            except ValueError:
                raise ValidationError(f"Unknown status: {status}", {"field": "status"}) from None
        after = _parse_cursor(cursor) if cursor else None
        self._sync_locks()
        now = self.clock()
        is_admin = self._is_admin(viewer)
        with self.db.cursor() as conn:
            rows = store.list_predictions(conn, status=status, sport=sport, creator=creator, cursor=after, limit=limit)
            page = rows[:limit]
            stakes = {p.id: store.get_stakes(conn, p.id) for p in page}
        next_cursor = None
        if len(rows) > limit:
            last = page[-1]
            key = last.created_at if status == PredictionStatus.SETTLED else last.locks_at
            next_cursor = f"{key}:{last.id}"
        views = [
            serialize_prediction(p, stakes[p.id], self.settings, now, viewer=viewer, viewer_is_admin=is_admin)
            for p in page
        ]
        return views, next_cursor

    def get_odds(self, prediction_id: str) -> list[OutcomeOdds]:
        return self.ledger.compute_odds(prediction_id)

    def leaderboard(self, sort: str = "profit", period: str = "all", limit: int = 20) -> list[dict[str, Any]]:
        if sort not in SORT_COLUMNS:
            raise ValidationError(f"Unknown sort: {sort}", {"field": "sort", "allowed": sorted(SORT_COLUMNS)})
        if period not in LEADERBOARD_PERIODS:
            raise ValidationError(f"Unknown period: {period}", {"field": "period", "allowed": list(LEADERBOARD_PERIODS)})
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}", {"field": "limit", "limit": limit})
        window = LEADERBOARD_PERIODS[period]
        since = self.clock() - window if window is not None else None
        with self.db.cursor() as conn:
            return prediction_leaderboard(conn, since_ms=since, sort=sort, limit=limit)
