"""Tests for wager placement: validation order, atomic debit, notifications."""

import pytest

from coinbet.errors import InsufficientBalance, NotFoundError, ValidationError
from coinbet.models import Account, Wager
from coinbet.services.placement import place_wager, resolve_odds

from conftest import add_account, add_market, balance_of, wagers_of


def test_place_wager_debits_and_records(db, session_factory, notifier):
    market = add_market(db, odds_a=2.0, odds_b=1.8)
    account = add_account(db, coins=100)

    wager = place_wager(db, account.id, market.id, 40, "Red", notifier)

    assert wager.status == "pending"
    assert wager.odds == 2.0
    assert wager.stake_amount == 40
    assert wager.market_external_id == "odds_1"
    assert wager.market_name == "Red vs Blue (EFL Cup)"
    assert wager.market_type == "soccer"
    assert balance_of(session_factory, account.id) == pytest.approx(60)
    assert wagers_of(session_factory, account.id) == [(40, 2.0, "Red", "pending")]
    assert notifier.events == [
        ("wagers_changed", {"account_id": account.id}),
        ("balances_changed", {"account_id": account.id}),
    ]


def test_odds_are_locked_at_placement(db):
    market = add_market(db, odds_a=2.0)
    account = add_account(db)
    wager = place_wager(db, account.id, market.id, 10, "Red")

    add_market(db, odds_a=3.5)  # Same external id: price moves
    db.refresh(wager)
    assert wager.odds == 2.0


def test_stake_over_balance_changes_nothing(db, session_factory, notifier):
    market = add_market(db)
    account = add_account(db, coins=100)

    with pytest.raises(InsufficientBalance):
        place_wager(db, account.id, market.id, 150, "Red", notifier)

    assert balance_of(session_factory, account.id) == pytest.approx(100)
    assert wagers_of(session_factory, account.id) == []
    assert notifier.events == []


def test_stake_equal_to_balance_is_allowed(db, session_factory):
    market = add_market(db)
    account = add_account(db, coins=100)
    place_wager(db, account.id, market.id, 100, "Blue")
    assert balance_of(session_factory, account.id) == 0


@pytest.mark.parametrize("stake", [0, -5, float("nan"), float("inf"), "abc", None, True, 0.001])
def test_bad_stake_rejected(db, session_factory, stake):
    market = add_market(db)
    account = add_account(db)
    with pytest.raises(ValidationError, match="Stake must be a positive amount"):
        place_wager(db, account.id, market.id, stake, "Red")
    assert balance_of(session_factory, account.id) == pytest.approx(100)


def test_unknown_market(db):
    account = add_account(db)
    with pytest.raises(NotFoundError, match="Market not found"):
        place_wager(db, account.id, 999, 10, "Red")


def test_unknown_side(db):
    market = add_market(db)
    account = add_account(db)
    with pytest.raises(ValidationError, match="Invalid selected side"):
        place_wager(db, account.id, market.id, 10, "Green")


def test_side_names_are_case_sensitive(db):
    market = add_market(db)
    account = add_account(db)
    with pytest.raises(ValidationError):
        place_wager(db, account.id, market.id, 10, "red")


def test_draw_needs_a_draw_price(db):
    market = add_market(db, odds_draw=None)
    account = add_account(db)
    with pytest.raises(ValidationError):
        place_wager(db, account.id, market.id, 10, "Draw")


def test_draw_wager_on_three_way_market(db, session_factory):
    market = add_market(db, odds_draw=3.4)
    account = add_account(db)
    wager = place_wager(db, account.id, market.id, 10, "Draw")
    assert wager.odds == 3.4
    assert balance_of(session_factory, account.id) == pytest.approx(90)


def test_unknown_account(db):
    market = add_market(db)
    with pytest.raises(NotFoundError, match="Account not found"):
        place_wager(db, 999, market.id, 10, "Red")


def test_validation_order_stake_before_market(db):
    # Both stake and market are bad: the stake error wins
    with pytest.raises(ValidationError):
        place_wager(db, 999, 999, -1, "Red")


def test_validation_order_market_before_account(db):
    with pytest.raises(NotFoundError, match="Market not found"):
        place_wager(db, 999, 999, 10, "Red")


def test_stake_is_rounded_to_coin_precision(db, session_factory):
    market = add_market(db)
    account = add_account(db)
    wager = place_wager(db, account.id, market.id, 10.004, "Red")
    assert wager.stake_amount == 10.0
    assert balance_of(session_factory, account.id) == pytest.approx(90)


def test_balance_drained_between_check_and_write(session_factory):
    """Two sessions both pass the balance check; only one debit lands."""
    setup = session_factory()
    market_id = add_market(setup).id
    account_id = add_account(setup, coins=100).id
    setup.close()

    first, second = session_factory(), session_factory()
    try:
        assert second.get(Account, account_id).coin_balance == 100
        place_wager(first, account_id, market_id, 80, "Red")
        with pytest.raises(InsufficientBalance):
            place_wager(second, account_id, market_id, 80, "Blue")
    finally:
        first.close()
        second.close()

    assert balance_of(session_factory, account_id) == pytest.approx(20)
    assert len(wagers_of(session_factory, account_id)) == 1


def test_resolve_odds_prefers_named_sides():
    market = type("M", (), {"side_a": "Red", "side_b": "Blue", "odds_a": 2.0,
                            "odds_b": 1.8, "odds_draw": 3.0, "has_draw": True})()
    assert resolve_odds(market, "Red") == 2.0
    assert resolve_odds(market, "Blue") == 1.8
    assert resolve_odds(market, "Draw") == 3.0


def test_wager_rows_only_from_placement(db):
    market = add_market(db)
    account = add_account(db, coins=50)
    with pytest.raises(InsufficientBalance):
        place_wager(db, account.id, market.id, 60, "Red")
    assert db.query(Wager).count() == 0


def test_fractional_stakes_can_spend_whole_balance(db, session_factory):
    market = add_market(db)
    account = add_account(db, coins=0.30)

    place_wager(db, account.id, market.id, 0.10, "Red")
    assert balance_of(session_factory, account.id) == 0.2

    place_wager(db, account.id, market.id, 0.20, "Red")
    assert balance_of(session_factory, account.id) == 0
    assert [w[0] for w in wagers_of(session_factory, account.id)] == [0.1, 0.2]
