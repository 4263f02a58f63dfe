"""Settlement results, odds and stake receipts."""

from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, Field

from predbites.models.prediction import PredictionStatus, Stake


class OutcomeOdds(BaseModel):
    """Display odds for one outcome. Informational only; payouts use final pool shares."""

    outcome_id: str
    label: str = ""
    pool: Decimal = Decimal("0")
    multiplier: float
    percentage: float
    implied_probability: float


class SettlementPayout(BaseModel):
    stake_id: str
    staker_id: str
    outcome_id: str
    amount: Decimal
    payout: Decimal


class SettlementResult(BaseModel):
    prediction_id: str
    status: PredictionStatus
    winning_outcome_id: str | None = None
    total_pool: Decimal
    winning_pool: Decimal = Decimal("0")
    platform_fee: Decimal = Decimal("0")
    burn_amount: Decimal = Decimal("0")
    reward_amount: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    remainder_stake_id: str | None = None
    refund_reason: str | None = None
    payouts: list[SettlementPayout] = Field(default_factory=list)


class StakeReceipt(BaseModel):
    """Result of a successful stake placement."""

    stake: Stake
    user_outcome_total: Decimal
    outcome_pool: Decimal
    total_pool: Decimal
    projected_payout: Decimal
    odds: float


class Countdown(BaseModel):
    """Time left until a prediction locks."""

    remaining_ms: int
    days: int
    hours: int
    minutes: int
    seconds: int
    locked: bool

    def label(self) -> str:
        if self.locked:
            return "Locked"
        if self.days:
            return f"{self.days}d {self.hours}h"
        if self.hours:
            return f"{self.hours}h {self.minutes}m"
        return f"{self.minutes}m {self.seconds}s"
