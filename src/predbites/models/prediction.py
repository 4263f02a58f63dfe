"""Prediction, Outcome, Stake - canonical entities."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field


class PredictionStatus(str, Enum):
    OPEN = "OPEN"
    LOCKED = "LOCKED"
    SETTLING = "SETTLING"
    SETTLED = "SETTLED"
    VOID = "VOID"
    REFUNDED = "REFUNDED"


class Outcome(BaseModel):
    """One mutually exclusive resolution of a prediction, with its own pool."""

    id: str
    prediction_id: str
    position: int = 0
    label: str
    pool: Decimal = Decimal("0")
    backer_count: int = 0
    is_winner: bool = False


class Stake(BaseModel):
    """A single stake row. Repeated stakes on one outcome are top-ups."""

    id: str
    prediction_id: str
    outcome_id: str
    staker_id: str
    amount: Decimal
    payout: Decimal | None = None  # None until settled/voided/refunded
    created_at: int  # ms epoch


class Prediction(BaseModel):
    """A wagering event with two or more outcomes."""

    id: str
    title: str
    creator_id: str
    sport_category: str | None = None
    match_reference: str | None = None
    locks_at: int  # ms epoch
    status: PredictionStatus = PredictionStatus.OPEN
    winning_outcome_id: str | None = None
    void_reason: str | None = None
    total_pool: Decimal = Decimal("0")
    created_at: int  # ms epoch
    settled_at: int | None = None
    settled_by: str | None = None
    platform_cut: Decimal = Decimal("0")
    burned_amount: Decimal = Decimal("0")
    reward_pool_amount: Decimal = Decimal("0")
    stake_count: int = 0
    outcomes: list[Outcome] = Field(default_factory=list)

    @property
    def modifiable(self) -> bool:
        """Title, lock time and outcome labels may change only before the first stake."""
        return self.status == PredictionStatus.OPEN and self.stake_count == 0

    def outcome(self, outcome_id: str) -> Outcome | None:
        for o in self.outcomes:
            if o.id == outcome_id:
                return o
        return None
