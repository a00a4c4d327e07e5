"""Shared fixtures: a throwaway SQLite database per test and feed stubs."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from coinbet.core.feed_config import FeedConfig
from coinbet.errors import FeedUnavailable
from coinbet.models import Base, Account, Market, Wager, atomic
from coinbet.services import ledger, market_store
from coinbet.services.market_store import MarketRecord
from coinbet.services.odds_feed import BookmakerQuote, OutcomeQuote, RawEvent, RawResult, ScoreEntry


@pytest.fixture
def session_factory(tmp_path):
    # File-backed so that separate sessions get separate connections
    engine = create_engine(
        f"sqlite:///{tmp_path / 'coinbet_test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def config():
    return FeedConfig.efl_cup()


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_event(event_id, home="Red", away="Blue", prices=None, commence="2026-10-20T19:45:00Z"):
    """
    prices: list of per-bookmaker dicts, e.g. [{"Red": 2.0, "Blue": 1.8, "Draw": 3.1}]
    """
    prices = prices if prices is not None else [{home: 2.0, away: 1.8}]
    bookmakers = tuple(
        BookmakerQuote(
            key=f"book{i}",
            outcomes=tuple(OutcomeQuote(name=n, price=p) for n, p in book.items()),
        )
        for i, book in enumerate(prices)
    )
    return RawEvent(id=event_id, home_team=home, away_team=away,
                    commence_time=commence, bookmakers=bookmakers)


def make_result(event_id, scores, completed=True):
    """scores: dict of team name -> score (raw, may be non-numeric)"""
    return RawResult(
        id=event_id,
        completed=completed,
        scores=tuple(ScoreEntry(name=n, score=None if s is None else str(s)) for n, s in scores.items()),
    )


def add_market(db, external_id="odds_1", side_a="Red", side_b="Blue",
               odds_a=2.0, odds_b=1.8, odds_draw=None, name=None) -> Market:
    with atomic(db):
        market = market_store.upsert_market(db, MarketRecord(
            external_id=external_id,
            name=name or f"{side_a} vs {side_b} (EFL Cup)",
            market_type="soccer",
            side_a=side_a,
            side_b=side_b,
            odds_a=odds_a,
            odds_b=odds_b,
            odds_draw=odds_draw,
        ))
    db.refresh(market)
    return market


def add_account(db, coins=100.0, name="U") -> Account:
    with atomic(db):
        account = ledger.open_account(db, name=name, coin_balance=coins)
    db.refresh(account)
    return account


def balance_of(session_factory, account_id) -> float:
    session = session_factory()
    try:
        return session.get(Account, account_id).coin_balance
    finally:
        session.close()


def wagers_of(session_factory, account_id):
    session = session_factory()
    try:
        return [
            (w.stake_amount, w.odds, w.selected_side, w.status)
            for w in session.query(Wager).filter(Wager.account_id == account_id).order_by(Wager.id)
        ]
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Feed stubs
# ---------------------------------------------------------------------------

class FakeFeedClient:
    """Stands in for OddsFeedClient; counts calls, can be told to fail."""

    def __init__(self, config=None, events=None, results=None, error=None):
        self.config = config or FeedConfig.efl_cup()
        self.events = events or []
        self.results = results or []
        self.error = error
        self.last_response_ms = 5
        self.market_calls = 0
        self.score_calls = 0

    def fetch_active_markets(self):
        self.market_calls += 1
        if self.error:
            raise self.error
        return list(self.events)

    def fetch_completed_events(self):
        self.score_calls += 1
        if self.error:
            raise self.error
        return [r for r in self.results if r.completed]


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event_name, payload=None):
        self.events.append((event_name, payload))

    def names(self):
        return [name for name, _ in self.events]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def outage():
    return FeedUnavailable("Odds API odds request failed: timed out")
