"""
The Odds API integration for market snapshots and final scores.
https://the-odds-api.com/

Two endpoints are consumed:

  /sports/{sport}/odds    head-to-head decimal prices per bookmaker
  /sports/{sport}/scores  completed flag plus per-team scores

Raw JSON is parsed into frozen dataclasses right here at the network
boundary.  A malformed entry is dropped (and logged) on its own; it never
fails the rest of the batch.  Network, timeout and HTTP errors surface as
FeedUnavailable, a missing API key as FeedMisconfigured.  There are no
retries: the refresh cooldown acts as backoff.
"""

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import requests
from sqlalchemy.orm import Session

from coinbet.core.feed_config import FeedConfig, ODDS_API_BASE_URL
from coinbet.core.odds_math import as_positive_finite
from coinbet.errors import CoinbetError, FeedMisconfigured, FeedUnavailable
from coinbet.models import DataFetch, atomic

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Feed payload types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OutcomeQuote:
    name: str
    price: float  # Decimal odds


@dataclass(frozen=True)
class BookmakerQuote:
    """One bookmaker's head-to-head prices for an event."""

    key: str
    outcomes: Tuple[OutcomeQuote, ...] = ()


@dataclass(frozen=True)
class RawEvent:
    """An upcoming or live event from the odds endpoint."""

    id: str
    home_team: str
    away_team: str
    commence_time: Optional[str] = None
    bookmakers: Tuple[BookmakerQuote, ...] = ()


@dataclass(frozen=True)
class ScoreEntry:
    name: str
    score: Optional[str] = None  # Kept raw; settlement decides if it is numeric


@dataclass(frozen=True)
class RawResult:
    """An event from the scores endpoint."""

    id: str
    completed: bool
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    scores: Tuple[ScoreEntry, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Boundary parsing (pure, no network)
# ---------------------------------------------------------------------------

def _text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_event(data: Dict, market_key: str = "h2h") -> Optional[RawEvent]:
    """
    Parse one odds-endpoint entry.

    The API returns::

        {"id": "e1", "home_team": "Red", "away_team": "Blue",
         "commence_time": "2026-10-20T19:45:00Z",
         "bookmakers": [{"key": "bet365", "markets": [
             {"key": "h2h", "outcomes": [{"name": "Red", "price": 2.0}, ...]}]}]}

    Returns None when the id or either team name is missing.  Quotes with
    an unusable price and markets other than ``market_key`` are dropped.
    """
    if not isinstance(data, dict):
        return None

    event_id = _text(data.get("id"))
    home = _text(data.get("home_team"))
    away = _text(data.get("away_team"))
    if not event_id or not home or not away:
        return None

    bookmakers: List[BookmakerQuote] = []
    for bm in data.get("bookmakers") or []:
        if not isinstance(bm, dict):
            continue
        outcomes: List[OutcomeQuote] = []
        for market in bm.get("markets") or []:
            if not isinstance(market, dict) or market.get("key") != market_key:
                continue
            for out in market.get("outcomes") or []:
                if not isinstance(out, dict):
                    continue
                name = _text(out.get("name"))
                price = as_positive_finite(out.get("price"))
                if name is None or price is None:
                    continue
                outcomes.append(OutcomeQuote(name=name, price=price))
        if outcomes:
            bookmakers.append(BookmakerQuote(key=str(bm.get("key", "")).lower(), outcomes=tuple(outcomes)))

    return RawEvent(
        id=event_id,
        home_team=home,
        away_team=away,
        commence_time=_text(data.get("commence_time")),
        bookmakers=tuple(bookmakers),
    )


def parse_result(data: Dict) -> Optional[RawResult]:
    """
    Parse one scores-endpoint entry.

    The API returns::

        {"id": "e1", "completed": true, "home_team": "Red", "away_team": "Blue",
         "scores": [{"name": "Red", "score": "3"}, {"name": "Blue", "score": "1"}]}

    ``scores`` is null for events that have not started.
    """
    if not isinstance(data, dict):
        return None

    event_id = _text(data.get("id"))
    if not event_id:
        return None

    scores: List[ScoreEntry] = []
    for entry in data.get("scores") or []:
        if not isinstance(entry, dict):
            continue
        name = _text(entry.get("name"))
        if name is None:
            continue
        raw = entry.get("score")
        scores.append(ScoreEntry(name=name, score=None if raw is None else str(raw)))

    return RawResult(
        id=event_id,
        completed=data.get("completed") is True,
        home_team=_text(data.get("home_team")),
        away_team=_text(data.get("away_team")),
        scores=tuple(scores),
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class OddsFeedClient:
    """Client for The Odds API"""

    def __init__(self, config: Optional[FeedConfig] = None, api_key: Optional[str] = None):
        self.config = config or FeedConfig.from_env()
        self.api_key = api_key or os.getenv("THE_ODDS_API_KEY")
        # Shared by request threads and the scheduler; timing is per thread
        self._local = threading.local()

    @property
    def last_response_ms(self) -> Optional[int]:
        """Duration of this thread's most recent request, in milliseconds."""
        return getattr(self._local, "response_ms", None)

    def _get(self, path: str, params: Dict) -> List:
        if not self.api_key:
            raise FeedMisconfigured("THE_ODDS_API_KEY not set in environment")

        url = f"{ODDS_API_BASE_URL}/sports/{self.config.sport_key}/{path}"
        started = time.monotonic()
        try:
            response = requests.get(
                url,
                params={"apiKey": self.api_key, **params},
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.error("Odds API %s error: %s", path, e)
            raise FeedUnavailable(f"Odds API {path} request failed: {e}") from e
        except ValueError as e:
            logger.error("Odds API %s returned invalid JSON: %s", path, e)
            raise FeedUnavailable(f"Odds API {path} returned invalid JSON") from e
        finally:
            self._local.response_ms = int((time.monotonic() - started) * 1000)

        if not isinstance(data, list):
            raise FeedUnavailable(f"Odds API {path} returned {type(data).__name__}, expected list")

        logger.info(
            "Odds API %s: %d entries. Quota: %s used, %s remaining",
            path, len(data),
            response.headers.get("x-requests-used"),
            response.headers.get("x-requests-remaining"),
        )
        return data

    def fetch_active_markets(self) -> List[RawEvent]:
        """
        Fetch current head-to-head prices for the configured competition.

        Returns one RawEvent per well-formed entry.
        """
        data = self._get("odds", {
            "regions": self.config.regions,
            "markets": self.config.market_key,
            "oddsFormat": "decimal",
            "dateFormat": "iso",
        })

        events = []
        for entry in data:
            event = parse_event(entry, market_key=self.config.market_key)
            if event is None:
                logger.warning("Dropping malformed odds entry: %r", entry)
                continue
            events.append(event)
        return events

    def fetch_completed_events(self) -> List[RawResult]:
        """Return completed events from the last ``scores_days_from`` days."""
        data = self._get("scores", {
            "daysFrom": self.config.scores_days_from,
            "dateFormat": "iso",
        })

        completed = []
        for entry in data:
            result = parse_result(entry)
            if result is None:
                logger.warning("Dropping malformed scores entry: %r", entry)
                continue
            if result.completed:
                completed.append(result)

        logger.info(
            "Scores API: %d total events, %d completed (daysFrom=%d)",
            len(data), len(completed), self.config.scores_days_from,
        )
        return completed


# ---------------------------------------------------------------------------
# Feed health
# ---------------------------------------------------------------------------

def record_fetch(
    db: Session,
    source: str,
    success: bool,
    records: int,
    error: Optional[str] = None,
    response_ms: Optional[int] = None,
) -> None:
    """Persist one DataFetch row.  A failure here is logged, never raised."""
    try:
        with atomic(db):
            db.add(DataFetch(
                data_source=source,
                success=success,
                records_fetched=records,
                error_message=error[:500] if error else None,
                response_time_ms=response_ms,
            ))
    except CoinbetError as exc:
        logger.warning("Could not record %s fetch: %s", source, exc)
