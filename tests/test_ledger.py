"""Pool ledger: stake recording, pool totals and the conservation invariant."""

import threading
from decimal import Decimal

import pytest

from predbites.errors import InsufficientBalance, InvalidAmount, NotFound, PredictionLocked

HOUR = 3_600_000


def test_record_stake_updates_pools(service, make_prediction):
    view = make_prediction()
    home, away = (o.id for o in view.outcomes)
    service.ledger.record_stake(view.id, home, "alice", "100")
    service.ledger.record_stake(view.id, away, "bob", "250.5")
    totals = service.ledger.pool_totals(view.id)
    assert totals["total_pool"] == Decimal("350.5")
    assert totals["outcome_pools"] == Decimal("350.5")
    assert totals["stakes"] == Decimal("350.5")
    assert service.ledger.check_conservation(view.id)


def test_top_up_counts_backer_once(service, make_prediction):
    view = make_prediction()
    home = view.outcomes[0].id
    service.ledger.record_stake(view.id, home, "alice", 100)
    service.ledger.record_stake(view.id, home, "alice", 50)
    service.ledger.record_stake(view.id, home, "bob", 20)
    detail = service.get_prediction(view.id)
    assert detail.outcomes[0].pool == Decimal("170")
    assert detail.outcomes[0].backer_count == 2
    assert service.ledger.total_user_stake(view.id, "alice") == Decimal("150")
    assert service.ledger.total_user_stake(view.id, "alice", outcome_id=view.outcomes[1].id) == Decimal("0")


def test_conservation_over_many_stakes(service, make_prediction):
    view = make_prediction(outcomes=("Home", "Draw", "Away"))
    ids = [o.id for o in view.outcomes]
    amounts = ["10", "12.5", "99.999", "1000", "33.333", "47", "10.001"]
    for i, amount in enumerate(amounts):
        service.ledger.record_stake(view.id, ids[i % 3], ["alice", "bob", "carol"][i % 3], amount)
    totals = service.ledger.pool_totals(view.id)
    expected = sum((Decimal(a) for a in amounts), Decimal("0"))
    assert totals["total_pool"] == totals["outcome_pools"] == totals["stakes"] == expected


def test_concurrent_stakes_conserve_pool(service, make_prediction):
    view = make_prediction()
    home, away = (o.id for o in view.outcomes)
    users = ["alice", "bob", "carol", "dave", "erin"]
    barrier = threading.Barrier(40)
    errors = []

    def stake(i):
        barrier.wait()
        try:
            service.place_stake(view.id, home if i % 2 else away, users[i % len(users)], 10)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=stake, args=(i,)) for i in range(40)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    totals = service.ledger.pool_totals(view.id)
    assert totals["total_pool"] == Decimal("400")
    assert service.ledger.check_conservation(view.id)
    detail = service.get_prediction(view.id)
    assert [o.pool for o in detail.outcomes] == [Decimal("200"), Decimal("200")]


def test_amount_bounds(service, make_prediction):
    view = make_prediction()
    home = view.outcomes[0].id
    for bad in ("5", "0", "-10", "1000.001", "12.3456"):
        with pytest.raises(InvalidAmount):
            service.ledger.record_stake(view.id, home, "alice", bad)
    assert service.ledger.pool_totals(view.id)["total_pool"] == Decimal("0")


def test_balance_checked_before_write(service, make_prediction):
    view = make_prediction()
    with pytest.raises(InsufficientBalance) as exc:
        service.ledger.record_stake(view.id, view.outcomes[0].id, "alice", 100, available_balance=Decimal("99"))
    assert exc.value.details == {"available": "99", "required": "100.000"}
    assert service.ledger.pool_totals(view.id)["stakes"] == Decimal("0")


def test_unknown_outcome_rejected(service, make_prediction):
    view = make_prediction()
    with pytest.raises(NotFound):
        service.ledger.record_stake(view.id, "not-an-outcome", "alice", 100)


def test_stake_after_lock_time_rejected(service, make_prediction, clock):
    view = make_prediction()
    clock.advance(HOUR)
    with pytest.raises(PredictionLocked):
        service.ledger.record_stake(view.id, view.outcomes[0].id, "alice", 100)
    assert service.ledger.pool_totals(view.id)["total_pool"] == Decimal("0")


def test_compute_odds(service, make_prediction):
    view = make_prediction()
    home, away = (o.id for o in view.outcomes)
    service.ledger.record_stake(view.id, home, "alice", 300)
    service.ledger.record_stake(view.id, away, "bob", 700)
    odds = {o.outcome_id: o for o in service.ledger.compute_odds(view.id)}
    assert odds[home].percentage == pytest.approx(30.0)
    assert odds[away].multiplier == pytest.approx(1000 / 700)
