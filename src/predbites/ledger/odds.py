"""Odds, payout and settlement arithmetic (Decimal, MEDALS precision)."""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, NamedTuple

from predbites.errors import InvalidAmount
from predbites.models import PredictionStatus, SettlementPayout, SettlementResult, Stake

TOKEN_PLACES = 3
TOKEN_QUANTUM = Decimal("0.001")
ZERO = Decimal("0")


class Odds(NamedTuple):
    multiplier: float
    percentage: float
    implied_probability: float


def to_amount(value: Any) -> Decimal:
    """Parse a token amount. Rejects non-numbers, non-finite values and more than 3 decimals."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmount(f"Amount is not a number: {value!r}") from None
    if not amount.is_finite():
        raise InvalidAmount(f"Amount is not a number: {value!r}")
    if amount != amount.quantize(TOKEN_QUANTUM, rounding=ROUND_DOWN):
        raise InvalidAmount(
            f"Amount has more than {TOKEN_PLACES} decimal places: {value}",
            {"precision": TOKEN_PLACES},
        )
    return amount.quantize(TOKEN_QUANTUM)


def quantize(value: Decimal, rounding: str = ROUND_HALF_UP) -> Decimal:
    return value.quantize(TOKEN_QUANTUM, rounding=rounding)


def calculate_odds(
    total_pool: Decimal,
    outcome_pool: Decimal,
    fee_pct: Decimal = ZERO,
    fallback: float = 1.0,
) -> Odds:
    """Display odds: total pool (net of fee) over the outcome pool, fallback when undefined."""
    total_pool = Decimal(total_pool)
    outcome_pool = Decimal(outcome_pool)
    if total_pool <= 0:
        return Odds(fallback, 0.0, 0.0)
    share = outcome_pool / total_pool
    if outcome_pool <= 0:
        return Odds(fallback, 0.0, 0.0)
    multiplier = total_pool * (1 - Decimal(fee_pct)) / outcome_pool
    return Odds(float(multiplier), float(share * 100), float(share))


def calculate_payout(
    stake_amount: Decimal,
    total_pool: Decimal,
    winning_pool: Decimal,
    fee_pct: Decimal = ZERO,
) -> Decimal:
    """Projected payout for a stake if its outcome wins with the pools as they are now."""
    if winning_pool <= 0:
        return ZERO
    distributable = Decimal(total_pool) * (1 - Decimal(fee_pct))
    return quantize(Decimal(stake_amount) * distributable / Decimal(winning_pool), ROUND_DOWN)


def calculate_fees(
    total_pool: Decimal,
    fee_pct: Decimal,
    burn_split: Decimal,
) -> tuple[Decimal, Decimal, Decimal]:
    """Return (platform_fee, burn_amount, reward_amount); burn + reward == platform_fee."""
    platform_fee = quantize(Decimal(total_pool) * Decimal(fee_pct))
    burn = quantize(platform_fee * Decimal(burn_split))
    return platform_fee, burn, platform_fee - burn


def calculate_settlement(
    prediction_id: str,
    stakes: list[Stake],
    winning_outcome_id: str,
    total_pool: Decimal,
    fee_pct: Decimal = ZERO,
    burn_split: Decimal = Decimal("0.5"),
) -> SettlementResult:
    """
    Split the whole pool (net of fee) among winning stakes in proportion to their amount.

    Each winning payout is rounded down to token precision; the leftover dust goes to the
    largest winning stake (earliest on ties), so payouts + fee == total_pool exactly.
    Losing stakes are listed with payout 0. The winning pool must be positive.
    """
    total_pool = Decimal(total_pool)
    winning = [s for s in stakes if s.outcome_id == winning_outcome_id]
    winning_pool = sum((s.amount for s in winning), ZERO)
    if winning_pool <= 0:
        raise ValueError("calculate_settlement requires a positive winning pool")

    platform_fee, burn, reward = calculate_fees(total_pool, fee_pct, burn_split)
    distributable = total_pool - platform_fee

    amounts: dict[str, Decimal] = {
        s.id: quantize(s.amount * distributable / winning_pool, ROUND_DOWN) for s in winning
    }
    remainder = distributable - sum(amounts.values(), ZERO)
    remainder_stake_id = None
    if remainder > 0:
        largest = winning[0]
        for s in winning[1:]:
            if s.amount > largest.amount:
                largest = s
        amounts[largest.id] += remainder
        remainder_stake_id = largest.id

    payouts = [
        SettlementPayout(
            stake_id=s.id,
            staker_id=s.staker_id,
            outcome_id=s.outcome_id,
            amount=s.amount,
            payout=amounts.get(s.id, ZERO),
        )
        for s in stakes
    ]
    return SettlementResult(
        prediction_id=prediction_id,
        status=PredictionStatus.SETTLED,
        winning_outcome_id=winning_outcome_id,
        total_pool=total_pool,
        winning_pool=winning_pool,
        platform_fee=platform_fee,
        burn_amount=burn,
        reward_amount=reward,
        total_paid=sum(amounts.values(), ZERO),
        remainder_stake_id=remainder_stake_id,
        payouts=payouts,
    )


def calculate_refund(prediction_id: str, stakes: list[Stake], status: PredictionStatus, reason: str) -> SettlementResult:
    """Every stake is returned in full."""
    payouts = [
        SettlementPayout(
            stake_id=s.id, staker_id=s.staker_id, outcome_id=s.outcome_id, amount=s.amount, payout=s.amount
        )
        for s in stakes
    ]
    total = sum((s.amount for s in stakes), ZERO)
    return SettlementResult(
        prediction_id=prediction_id,
        status=status,
        total_pool=total,
        total_paid=total,
        refund_reason=reason,
        payouts=payouts,
    )
