"""
Market Store: storage and queries for the markets table.

No business logic lives here.  Functions flush but never commit; the
calling service decides the transaction boundary (see models.atomic).
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from coinbet.core.feed_config import MANUAL_ID_PREFIX
from coinbet.models import Market

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarketRecord:
    """All non-key fields of a market, keyed by external_id."""

    external_id: str
    name: str
    market_type: str
    side_a: str
    side_b: str
    odds_a: float
    odds_b: float
    odds_draw: Optional[float] = None
    start_time: Optional[datetime] = None

    @property
    def has_draw(self) -> bool:
        return self.odds_draw is not None


def parse_start_time(value: Optional[str]) -> Optional[datetime]:
    """ISO-8601 ('2026-10-20T19:45:00Z') -> naive UTC datetime, or None."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        logger.debug("Unparseable start time %r", value)
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def get_market(db: Session, market_id: int) -> Optional[Market]:
    return db.query(Market).filter(Market.id == market_id).first()


def get_market_by_external_id(db: Session, external_id: str) -> Optional[Market]:
    return db.query(Market).filter(Market.external_id == external_id).first()


def list_markets(db: Session, prefix: Optional[str] = None) -> List[Market]:
    """All markets, soonest first, unscheduled last.  Optionally one namespace."""
    query = db.query(Market)
    if prefix:
        query = query.filter(Market.external_id.startswith(prefix, autoescape=True))
    return query.order_by(Market.start_time.asc().nulls_last(), Market.id.asc()).all()


def upsert_market(db: Session, record: MarketRecord) -> Market:
    """Insert or overwrite every non-key field (last write wins)."""
    market = get_market_by_external_id(db, record.external_id)
    if market is None:
        market = Market(external_id=record.external_id)
        db.add(market)

    market.name = record.name
    market.market_type = record.market_type
    market.side_a = record.side_a
    market.side_b = record.side_b
    market.odds_a = record.odds_a
    market.odds_b = record.odds_b
    market.odds_draw = record.odds_draw
    market.has_draw = record.has_draw
    market.start_time = record.start_time
    db.flush()
    return market


def delete_markets(db: Session, prefix: str, keep_external_ids: Iterable[str]) -> int:
    """
    Delete markets in the ``prefix`` namespace whose external id is not kept.

    Returns the number of rows deleted.
    """
    keep = list(keep_external_ids)
    query = db.query(Market).filter(Market.external_id.startswith(prefix, autoescape=True))
    if keep:
        query = query.filter(Market.external_id.notin_(keep))
    deleted = query.delete(synchronize_session=False)
    db.flush()
    return deleted


def create_manual_market(
    db: Session,
    side_a: str,
    side_b: str,
    odds_a: float,
    odds_b: float,
    odds_draw: Optional[float] = None,
    market_type: str = "custom",
    start_time: Optional[datetime] = None,
    name: Optional[str] = None,
) -> Market:
    """Admin-created market outside the feed namespace; never pruned."""
    record = MarketRecord(
        external_id=f"{MANUAL_ID_PREFIX}{uuid.uuid4().hex}",
        name=name or f"{side_a} vs {side_b}",
        market_type=market_type,
        side_a=side_a,
        side_b=side_b,
        odds_a=odds_a,
        odds_b=odds_b,
        odds_draw=odds_draw,
        start_time=start_time,
    )
    return upsert_market(db, record)
