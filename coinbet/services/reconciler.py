"""
Market reconciliation: feed snapshot -> Market Store.

One pass:
  1. best decimal price per outcome across all bookmakers (None if unquoted)
  2. skip events missing either side's price
  3. upsert survivors by external id (last write wins)
  4. prune feed-namespace markets absent from a NON-EMPTY snapshot

An empty snapshot is indistinguishable from a feed outage and deletes
nothing.  Reconciling the same snapshot twice leaves the store unchanged.
"""

import logging
import threading
import time
from dataclasses import dataclass, asdict
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from coinbet.core.feed_config import FeedConfig
from coinbet.core.odds_math import best_price
from coinbet.errors import CoinbetError, FeedError
from coinbet.models import atomic
from coinbet.services import market_store
from coinbet.services.notifier import MARKETS_CHANGED, Notifier
from coinbet.services.odds_feed import OddsFeedClient, RawEvent, record_fetch

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BestPrices:
    home: Optional[float]
    away: Optional[float]
    draw: Optional[float]

    @property
    def tradeable(self) -> bool:
        return self.home is not None and self.away is not None


@dataclass
class ReconcileResult:
    fetched: int = 0
    upserted: int = 0
    skipped_no_odds: int = 0
    active_now: int = 0
    pruned: int = 0

    @property
    def wrote(self) -> bool:
        return self.upserted > 0 or self.pruned > 0

    def to_dict(self) -> Dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Pricing (pure)
# ---------------------------------------------------------------------------

def best_prices(event: RawEvent) -> BestPrices:
    """Maximum quoted price per outcome across every bookmaker."""
    home = away = draw = None
    for bookmaker in event.bookmakers:
        for outcome in bookmaker.outcomes:
            if outcome.name == event.home_team:
                home = best_price(home, outcome.price)
            elif outcome.name == event.away_team:
                away = best_price(away, outcome.price)
            elif outcome.name.lower() == "draw":
                draw = best_price(draw, outcome.price)
    return BestPrices(home=home, away=away, draw=draw)


def to_market_record(event: RawEvent, prices: BestPrices, config: FeedConfig) -> market_store.MarketRecord:
    return market_store.MarketRecord(
        external_id=config.external_id(event.id),
        name=config.market_name(event.home_team, event.away_team),
        market_type=config.market_type,
        side_a=event.home_team,
        side_b=event.away_team,
        odds_a=prices.home,
        odds_b=prices.away,
        odds_draw=prices.draw,
        start_time=market_store.parse_start_time(event.commence_time),
    )


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def reconcile_markets(
    db: Session,
    events: Sequence[RawEvent],
    config: FeedConfig,
    notifier: Optional[Notifier] = None,
) -> ReconcileResult:
    """
    Apply a feed snapshot to the Market Store as one transaction.

    Raises StorageError (after rollback) if the store fails; nothing from
    the snapshot is applied in that case.
    """
    result = ReconcileResult(fetched=len(events))
    active_ids: List[str] = []

    with atomic(db):
        for event in events:
            prices = best_prices(event)
            if not prices.tradeable:
                result.skipped_no_odds += 1
                logger.debug("Skipping %s vs %s: missing side price", event.home_team, event.away_team)
                continue

            record = to_market_record(event, prices, config)
            market_store.upsert_market(db, record)
            active_ids.append(record.external_id)
            result.upserted += 1

        if active_ids:
            result.pruned = market_store.delete_markets(db, config.id_prefix, active_ids)
        else:
            logger.warning(
                "Feed snapshot had no tradeable markets (%d fetched); skipping prune",
                len(events),
            )

    result.active_now = len(set(active_ids))
    logger.info(
        "Reconciled %s: fetched=%d upserted=%d skipped=%d pruned=%d",
        config.sport_key, result.fetched, result.upserted,
        result.skipped_no_odds, result.pruned,
    )

    if result.wrote and notifier is not None:
        notifier.notify(MARKETS_CHANGED)
    return result


# ---------------------------------------------------------------------------
# Cooldown-gated refresh
# ---------------------------------------------------------------------------

class SyncCooldown:
    """
    Minimum interval between feed fetches, shared by every caller.

    ``try_claim`` checks and advances the timestamp under one lock, so
    within a process at most one caller per window gets to fetch.  A
    claimed window is kept even if the fetch then fails.
    """

    def __init__(self, interval_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._last_claim: Optional[float] = None

    def try_claim(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._last_claim is not None and now - self._last_claim < self.interval_seconds:
                return False
            self._last_claim = now
            return True

    def reset(self) -> None:
        with self._lock:
            self._last_claim = None

    def seconds_remaining(self) -> float:
        with self._lock:
            if self._last_claim is None:
                return 0.0
            return max(0.0, self.interval_seconds - (self._clock() - self._last_claim))


def refresh_markets(
    db: Session,
    client: OddsFeedClient,
    cooldown: SyncCooldown,
    notifier: Optional[Notifier] = None,
    force: bool = False,
) -> Dict:
    """
    Fetch and reconcile if the cooldown allows it.

    Returns a sync status dict, never raises for feed or store failures:
      {"ok": True,  "skipped": True}                       cooldown active
      {"ok": True,  "skipped": False, fetched, upserted, ...}
      {"ok": False, "skipped": False, "error": "..."}       degraded
    """
    if not force and not cooldown.try_claim():
        return {"ok": True, "skipped": True, "retry_in_seconds": round(cooldown.seconds_remaining(), 1)}
    if force:
        cooldown.reset()
        cooldown.try_claim()

    try:
        events = client.fetch_active_markets()
    except FeedError as exc:
        logger.error("Odds sync failed: %s", exc)
        record_fetch(db, "odds_api_odds", False, 0, str(exc), client.last_response_ms)
        return {"ok": False, "skipped": False, "error": str(exc)}

    record_fetch(db, "odds_api_odds", True, len(events), response_ms=client.last_response_ms)

    try:
        result = reconcile_markets(db, events, client.config, notifier)
    except CoinbetError as exc:
        logger.error("Odds sync could not be applied: %s", exc)
        return {"ok": False, "skipped": False, "error": str(exc)}

    return {"ok": True, "skipped": False, **result.to_dict()}
