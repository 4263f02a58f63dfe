"""Pool arithmetic: amounts, odds, payouts, fees and settlement splits."""

from decimal import Decimal

import pytest

from predbites.errors import InvalidAmount
from predbites.ledger.odds import calculate_fees, calculate_odds, calculate_payout, calculate_refund, calculate_settlement, to_amount
from predbites.models import PredictionStatus, Stake


def _stake(stake_id, outcome_id, amount, staker=None, created_at=0):
    return Stake(
        id=stake_id,
        prediction_id="p1",
        outcome_id=outcome_id,
        staker_id=staker or stake_id,
        amount=Decimal(str(amount)),
        created_at=created_at,
    )


def test_to_amount_accepts_three_decimals():
    assert to_amount("12.345") == Decimal("12.345")
    assert to_amount(50) == Decimal("50.000")
    assert to_amount(Decimal("0.1")) == Decimal("0.100")


@pytest.mark.parametrize("bad", ["abc", "1.2345", "NaN", "Infinity", None, ""])
def test_to_amount_rejects_junk(bad):
    with pytest.raises(InvalidAmount):
        to_amount(bad)


def test_odds_reflect_pool_shares():
    odds = calculate_odds(Decimal("1000"), Decimal("300"))
    assert odds.multiplier == pytest.approx(1000 / 300)
    assert odds.percentage == pytest.approx(30.0)
    assert odds.implied_probability == pytest.approx(0.3)


def test_odds_fallback_for_empty_pools():
    assert calculate_odds(Decimal("0"), Decimal("0"), fallback=1.0).multiplier == 1.0
    empty_side = calculate_odds(Decimal("500"), Decimal("0"), fallback=1.5)
    assert empty_side.multiplier == 1.5
    assert empty_side.percentage == 0.0


def test_odds_net_of_fee():
    odds = calculate_odds(Decimal("1000"), Decimal("500"), fee_pct=Decimal("0.1"))
    assert odds.multiplier == pytest.approx(1.8)


def test_payout_rounds_down():
    # 100 * 1000 / 300 = 333.3333...
    assert calculate_payout(Decimal("100"), Decimal("1000"), Decimal("300")) == Decimal("333.333")
    assert calculate_payout(Decimal("100"), Decimal("1000"), Decimal("0")) == Decimal("0")


def test_fees_split_exactly():
    fee, burn, reward = calculate_fees(Decimal("1000.001"), Decimal("0.05"), Decimal("0.5"))
    assert fee == Decimal("50.000")
    assert burn + reward == fee


def test_settlement_two_outcomes_example():
    stakes = [
        _stake("s1", "A", 100, "alice"),
        _stake("s2", "A", 200, "bob"),
        _stake("s3", "B", 700, "carol"),
    ]
    result = calculate_settlement("p1", stakes, "A", Decimal("1000"))
    payouts = {p.stake_id: p.payout for p in result.payouts}
    # 333.333 + 666.666 = 999.999; the 0.001 dust goes to the largest winning stake
    assert payouts["s1"] == Decimal("333.333")
    assert payouts["s2"] == Decimal("666.667")
    assert payouts["s3"] == Decimal("0")
    assert result.total_paid == Decimal("1000")
    assert result.remainder_stake_id == "s2"
    assert result.winning_pool == Decimal("300")


def test_settlement_dust_goes_to_earliest_on_ties():
    stakes = [_stake("s1", "A", 10), _stake("s2", "A", 10), _stake("s3", "A", 10), _stake("s4", "B", 70)]
    result = calculate_settlement("p1", stakes, "A", Decimal("100"))
    payouts = {p.stake_id: p.payout for p in result.payouts}
    assert payouts["s2"] == payouts["s3"] == Decimal("33.333")
    assert payouts["s1"] == Decimal("33.334")
    assert sum(payouts.values()) == Decimal("100")


def test_settlement_with_fee_conserves_pool():
    stakes = [_stake("s1", "A", 150), _stake("s2", "B", 250), _stake("s3", "C", 100)]
    result = calculate_settlement("p1", stakes, "B", Decimal("500"), fee_pct=Decimal("0.03"), burn_split=Decimal("0.5"))
    assert result.platform_fee == Decimal("15.000")
    assert result.burn_amount + result.reward_amount == result.platform_fee
    assert result.total_paid + result.platform_fee == Decimal("500")
    assert {p.stake_id: p.payout for p in result.payouts}["s2"] == Decimal("485.000")


def test_settlement_requires_winning_pool():
    with pytest.raises(ValueError):
        calculate_settlement("p1", [_stake("s1", "A", 100)], "B", Decimal("100"))


def test_refund_returns_every_stake():
    stakes = [_stake("s1", "A", 40), _stake("s2", "B", 60)]
    result = calculate_refund("p1", stakes, PredictionStatus.VOID, "match abandoned")
    assert [p.payout for p in result.payouts] == [Decimal("40"), Decimal("60")]
    assert result.total_paid == Decimal("100")
    assert result.status == PredictionStatus.VOID
    assert result.refund_reason == "match abandoned"
