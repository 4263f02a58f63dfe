"""Settlement engine: payouts, exactly-once, void, refunds and zero-pool policies."""

import threading
from decimal import Decimal

import pytest

from predbites.errors import (
    Forbidden,
    InvalidTransition,
    PredictionNotOpen,
    ValidationError,
    ZeroPoolSettlement,
)
from predbites.models import MatchResult, PredictionStatus

S = PredictionStatus


@pytest.fixture
def staked(service, make_prediction):
    """A: alice 100 + bob 200, B: carol 700. Locked and ready to settle."""
    view = make_prediction(outcomes=("A", "B"))
    a, b = (o.id for o in view.outcomes)
    service.place_stake(view.id, a, "alice", 100)
    service.place_stake(view.id, a, "bob", 200)
    service.place_stake(view.id, b, "carol", 700)
    service.lock_prediction(view.id, "creator")
    return view.id, a, b


def test_settle_pays_winners_proportionally(service, staked):
    pid, a, b = staked
    result = service.settle_prediction(pid, a, "creator")
    assert result.status == S.SETTLED
    assert result.total_pool == Decimal("1000")
    assert result.total_paid == Decimal("1000")
    by_user = {p.staker_id: p.payout for p in result.payouts}
    assert by_user == {"alice": Decimal("333.333"), "bob": Decimal("666.667"), "carol": Decimal("0")}

    view = service.get_prediction(pid, viewer="alice")
    assert view.status == S.SETTLED
    assert view.winning_outcome_id == a
    assert view.settled_by == "creator"
    assert view.outcomes[0].is_winner and not view.outcomes[1].is_winner
    assert view.user_stakes[0].payout == Decimal("333.333")
    assert service.ledger.user_payout_sum(pid, "carol") == Decimal("0")


def test_settle_twice_is_rejected_and_payouts_unchanged(service, staked):
    pid, a, b = staked
    service.settle_prediction(pid, a, "creator")
    with pytest.raises(InvalidTransition):
        service.settle_prediction(pid, b, "creator")
    assert service.ledger.user_payout_sum(pid, "carol") == Decimal("0")
    assert service.ledger.user_payout_sum(pid, "bob") == Decimal("666.667")
    assert service.get_prediction(pid).winning_outcome_id == a


def test_concurrent_settle_runs_exactly_once(service, staked):
    pid, a, _ = staked
    outcomes = []
    barrier = threading.Barrier(2)

    def settle():
        barrier.wait()
        try:
            outcomes.append(service.settle_prediction(pid, a, "sportsblock"))
        except InvalidTransition as e:
            outcomes.append(e)

    threads = [threading.Thread(target=settle) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    succeeded = [o for o in outcomes if not isinstance(o, Exception)]
    failed = [o for o in outcomes if isinstance(o, InvalidTransition)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    paid = service.ledger.user_payout_sum(pid, "alice") + service.ledger.user_payout_sum(pid, "bob")
    assert paid == Decimal("1000")


def test_settle_requires_lock(service, make_prediction):
    view = make_prediction()
    service.place_stake(view.id, view.outcomes[0].id, "alice", 100)
    with pytest.raises(InvalidTransition):
        service.settle_prediction(view.id, view.outcomes[0].id, "creator")
    assert service.get_prediction(view.id).status == S.OPEN


def test_settle_requires_creator_or_admin(service, staked):
    pid, a, _ = staked
    with pytest.raises(Forbidden):
        service.settle_prediction(pid, a, "alice")
    assert service.get_prediction(pid).status == S.LOCKED


def test_settle_unknown_outcome_rolls_back(service, staked):
    pid, _, _ = staked
    with pytest.raises(ValidationError):
        service.settle_prediction(pid, "nope", "creator")
    assert service.get_prediction(pid).status == S.LOCKED


def test_no_stakes_after_settlement(service, staked):
    pid, a, _ = staked
    service.settle_prediction(pid, a, "creator")
    with pytest.raises(PredictionNotOpen):
        service.place_stake(pid, a, "dave", 50)


def test_void_refunds_everyone(service, staked):
    pid, _, _ = staked
    result = service.void_prediction(pid, "  Match postponed ", "sportsblock")
    assert result.status == S.VOID
    assert {p.staker_id: p.payout for p in result.payouts} == {
        "alice": Decimal("100"),
        "bob": Decimal("200"),
        "carol": Decimal("700"),
    }
    view = service.get_prediction(pid, viewer="carol")
    assert view.status == S.VOID
    assert view.void_reason == "Match postponed"
    assert view.user_stakes[0].refunded


def test_void_requires_reason(service, staked):
    pid, _, _ = staked
    with pytest.raises(ValidationError):
        service.void_prediction(pid, "   ", "creator")
    assert service.get_prediction(pid).status == S.LOCKED


def test_void_after_settle_rejected(service, staked):
    pid, a, _ = staked
    service.settle_prediction(pid, a, "creator")
    with pytest.raises(InvalidTransition):
        service.void_prediction(pid, "changed my mind", "creator")


def test_zero_winning_pool_refunds_by_default(service, make_prediction):
    view = make_prediction(outcomes=("Home", "Draw", "Away"))
    home, draw, away = (o.id for o in view.outcomes)
    service.place_stake(view.id, home, "alice", 100)
    service.place_stake(view.id, away, "bob", 50)
    service.lock_prediction(view.id, "creator")
    result = service.settle_prediction(view.id, draw, "creator")
    assert result.status == S.REFUNDED
    assert result.total_paid == Decimal("150")
    detail = service.get_prediction(view.id)
    assert detail.status == S.REFUNDED
    assert detail.winning_outcome_id == draw
    assert service.ledger.user_payout_sum(view.id, "alice") == Decimal("100")


def test_zero_winning_pool_rejected_when_configured(build_service, make_prediction):
    view = make_prediction(outcomes=("Home", "Draw", "Away"))
    strict = build_service(predictions={"zero_pool_policy": "reject"})
    home, draw, _ = (o.id for o in view.outcomes)
    strict.place_stake(view.id, home, "alice", 100)
    strict.lock_prediction(view.id, "creator")
    with pytest.raises(ZeroPoolSettlement):
        strict.settle_prediction(view.id, draw, "creator")
    assert strict.get_prediction(view.id).status == S.LOCKED
    # Void stays available as the way out
    assert strict.void_prediction(view.id, "no winner", "creator").status == S.VOID


def test_unopposed_prediction_is_refunded(service, make_prediction):
    view = make_prediction()
    home = view.outcomes[0].id
    service.place_stake(view.id, home, "alice", 100)
    service.place_stake(view.id, home, "bob", 40)
    service.lock_prediction(view.id, "creator")
    result = service.settle_prediction(view.id, home, "creator")
    assert result.status == S.REFUNDED
    assert {p.staker_id: p.payout for p in result.payouts} == {"alice": Decimal("100"), "bob": Decimal("40")}


def test_settlement_with_platform_fee(build_service, make_prediction):
    view = make_prediction()
    svc = build_service(fees={"platform_fee_pct": 0.05, "burn_split": 0.6})
    home, away = (o.id for o in view.outcomes)
    svc.place_stake(view.id, home, "alice", 400)
    svc.place_stake(view.id, away, "bob", 600)
    svc.lock_prediction(view.id, "creator")
    result = svc.settle_prediction(view.id, home, "creator")
    assert result.platform_fee == Decimal("50.000")
    assert result.burn_amount == Decimal("30.000")
    assert result.reward_amount == Decimal("20.000")
    assert result.total_paid == Decimal("950")
    detail = svc.get_prediction(view.id)
    assert detail.settlement.platform_cut == Decimal("50")
    assert detail.settlement.burned_amount + detail.settlement.reward_pool_amount == Decimal("50")


def test_auto_settle_from_match_result(service, make_prediction):
    view = make_prediction(outcomes=("Arsenal", "Draw", "Chelsea"))
    arsenal, _, chelsea = (o.id for o in view.outcomes)
    service.place_stake(view.id, arsenal, "alice", 100)
    service.place_stake(view.id, chelsea, "bob", 100)
    service.lock_prediction(view.id, "creator")
    match = MatchResult(home_team="Arsenal", away_team="Chelsea", home_score=2, away_score=1)
    result = service.auto_settle_prediction(view.id, match, "sportsblock")
    assert result.winning_outcome_id == arsenal
    assert result.status == S.SETTLED


def test_auto_settle_unfinished_match_rejected(service, staked):
    pid, _, _ = staked
    match = MatchResult(home_team="A", away_team="B", home_score=1, away_score=0, status="in_progress")
    with pytest.raises(ValidationError):
        service.auto_settle_prediction(pid, match, "creator")
    assert service.get_prediction(pid).status == S.LOCKED
