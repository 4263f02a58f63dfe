"""Read-side views of predictions: outcomes with odds, top stakers, the viewer's own stakes."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from predbites.ledger.odds import ZERO, calculate_odds
from predbites.lifecycle.state_machine import effective_status, remaining
from predbites.models import Prediction, PredictionStatus, Stake

if TYPE_CHECKING:
    from predbites.config import Settings

TOP_STAKERS = 5


class StakerView(BaseModel):
    staker_id: str
    amount: Decimal
    payout: Decimal | None = None


class OutcomeView(BaseModel):
    id: str
    label: str
    pool: Decimal
    backer_count: int
    is_winner: bool
    odds: float
    percentage: float
    stakers: list[StakerView] | None = None


class UserStakeView(BaseModel):
    stake_id: str
    outcome_id: str
    amount: Decimal
    payout: Decimal | None = None
    refunded: bool = False


class SettlementSummary(BaseModel):
    platform_cut: Decimal
    burned_amount: Decimal
    reward_pool_amount: Decimal


class PredictionView(BaseModel):
    id: str
    title: str
    creator_id: str
    sport_category: str | None = None
    match_reference: str | None = None
    locks_at: int
    remaining_ms: int
    status: PredictionStatus
    total_pool: Decimal
    outcomes: list[OutcomeView] = Field(default_factory=list)
    winning_outcome_id: str | None = None
    void_reason: str | None = None
    settled_at: int | None = None
    settled_by: str | None = None
    created_at: int
    modifiable: bool
    can_modify: bool = False
    user_stakes: list[UserStakeView] | None = None
    settlement: SettlementSummary | None = None


def _stakers(stakes: list[Stake], outcome_id: str) -> list[StakerView]:
    """Combine each user's stakes on one outcome; largest first, top five."""
    by_user: dict[str, list[Decimal]] = {}
    payouts: dict[str, Decimal | None] = {}
    for s in stakes:
        if s.outcome_id != outcome_id:
            continue
        by_user.setdefault(s.staker_id, []).append(s.amount)
        if s.payout is not None:
            payouts[s.staker_id] = (payouts.get(s.staker_id) or ZERO) + s.payout
    views = [
        StakerView(staker_id=user, amount=sum(amounts, ZERO), payout=payouts.get(user))
        for user, amounts in by_user.items()
    ]
    views.sort(key=lambda v: v.amount, reverse=True)
    return views[:TOP_STAKERS]


def serialize_prediction(
    prediction: Prediction,
    stakes: list[Stake] | None,
    settings: Settings,
    now: int,
    viewer: str | None = None,
    viewer_is_admin: bool = False,
    include_stakers: bool = True,
) -> PredictionView:
    status = effective_status(prediction, now)
    outcomes = []
    for outcome in prediction.outcomes:
        odds = calculate_odds(
            prediction.total_pool, outcome.pool, fee_pct=settings.platform_fee_pct, fallback=settings.odds_fallback
        )
        outcomes.append(
            OutcomeView(
                id=outcome.id,
                label=outcome.label,
                pool=outcome.pool,
                backer_count=outcome.backer_count,
                is_winner=outcome.is_winner,
                odds=odds.multiplier,
                percentage=odds.percentage,
                stakers=_stakers(stakes, outcome.id) if include_stakers and stakes is not None else None,
            )
        )

    user_stakes = None
    if viewer and stakes:
        mine = [s for s in stakes if s.staker_id == viewer]
        if mine:
            refunded_status = status in (PredictionStatus.VOID, PredictionStatus.REFUNDED)
            user_stakes = [
                UserStakeView(
                    stake_id=s.id,
                    outcome_id=s.outcome_id,
                    amount=s.amount,
                    payout=s.payout,
                    refunded=refunded_status and s.payout is not None,
                )
                for s in mine
            ]

    modifiable = status == PredictionStatus.OPEN and prediction.stake_count == 0
    is_owner = bool(viewer) and (viewer == prediction.creator_id or viewer_is_admin)
    view = PredictionView(
        id=prediction.id,
        title=prediction.title,
        creator_id=prediction.creator_id,
        sport_category=prediction.sport_category,
        match_reference=prediction.match_reference,
        locks_at=prediction.locks_at,
        remaining_ms=remaining(prediction.locks_at, now).remaining_ms,
        status=status,
        total_pool=prediction.total_pool,
        outcomes=outcomes,
        winning_outcome_id=prediction.winning_outcome_id,
        void_reason=prediction.void_reason,
        settled_at=prediction.settled_at,
        settled_by=prediction.settled_by,
        created_at=prediction.created_at,
        modifiable=modifiable,
        can_modify=modifiable and is_owner,
        user_stakes=user_stakes,
    )
    if prediction.platform_cut > 0:
        view.settlement = SettlementSummary(
            platform_cut=prediction.platform_cut,
            burned_amount=prediction.burned_amount,
            reward_pool_amount=prediction.reward_pool_amount,
        )
    return view
