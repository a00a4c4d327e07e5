"""
Wager settlement against reported final scores.

Entry points:
  run_auto_settlement(db, client)   - scheduler / admin: fetch scores, settle
  settle_completed_events(db, rs)   - settle an already-fetched batch
  settle_wager(db, wager_id, res)   - admin: resolve one wager by hand

Each wager is settled in its own transaction: the conditional
pending -> won|lost transition and (for a win) the balance credit commit
together or not at all.  A wager that is no longer pending matches zero
rows and is skipped, so re-running a batch never credits twice.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coinbet.core.feed_config import DRAW_LABEL, FeedConfig
from coinbet.core.odds_math import as_finite, payout
from coinbet.errors import (
    CoinbetError,
    ConflictError,
    FeedError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from coinbet.models import Market, Wager, WAGER_LOST, WAGER_PENDING, WAGER_WON, atomic
from coinbet.services import ledger, market_store
from coinbet.services.notifier import BALANCES_CHANGED, WAGERS_CHANGED, Notifier
from coinbet.services.odds_feed import OddsFeedClient, RawResult, record_fetch

logger = logging.getLogger(__name__)


@dataclass
class SettlementSummary:
    resolved: int = 0
    won: int = 0
    lost: int = 0
    completed_events: int = 0
    markets_matched: int = 0
    errors: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def to_dict(self) -> Dict:
        return {
            "resolved": self.resolved,
            "won": self.won,
            "lost": self.lost,
            "completed_events": self.completed_events,
            "markets_matched": self.markets_matched,
            "errors": list(self.errors),
            "timestamp": self.timestamp,
        }


# ---------------------------------------------------------------------------
# Outcome decision (pure, no DB)
# ---------------------------------------------------------------------------

def extract_scores(market: Market, result: RawResult) -> Optional[tuple]:
    """
    Return (side_a_score, side_b_score), or None if either side is absent
    or not numeric.
    """
    score_a = score_b = None
    for entry in result.scores:
        if entry.name == market.side_a:
            score_a = as_finite(entry.score)
        elif entry.name == market.side_b:
            score_b = as_finite(entry.score)
    if score_a is None or score_b is None:
        return None
    return score_a, score_b


def decide_outcome(market: Market, result: RawResult) -> Optional[str]:
    """Winning label: side_a's name, side_b's name, or "Draw"."""
    scores = extract_scores(market, result)
    if scores is None:
        return None
    score_a, score_b = scores
    if score_a > score_b:
        return market.side_a
    if score_b > score_a:
        return market.side_b
    return DRAW_LABEL


# ---------------------------------------------------------------------------
# Atomic unit
# ---------------------------------------------------------------------------

def _settle_one(db: Session, wager: Wager, won: bool) -> bool:
    """
    Settle a single wager as one transaction.

    Returns False if the wager had already been settled by someone else.
    """
    new_status = WAGER_WON if won else WAGER_LOST
    credit = payout(wager.stake_amount, wager.odds) if won else None

    with atomic(db):
        if not ledger.transition_wager_status(db, wager.id, WAGER_PENDING, new_status, payout=credit):
            return False
        if won:
            ledger.adjust_balance(db, wager.account_id, credit)
    return True


# ---------------------------------------------------------------------------
# Batch settlement
# ---------------------------------------------------------------------------

def settle_completed_events(
    db: Session,
    results: Sequence[RawResult],
    config: Optional[FeedConfig] = None,
    notifier: Optional[Notifier] = None,
) -> SettlementSummary:
    """
    Resolve all pending wagers on markets whose event has completed.

    Results without a local market, without usable scores, or without
    pending wagers are skipped silently.  A wager whose unit fails with
    StorageError is rolled back, left pending and recorded in
    ``summary.errors``; the rest of the batch still runs.
    """
    config = config or FeedConfig.from_env()
    completed = [r for r in results if r.completed]
    summary = SettlementSummary(completed_events=len(completed))

    for result in completed:
        try:
            market = market_store.get_market_by_external_id(db, config.external_id(result.id))
            if market is None:
                continue  # Pruned already, or never offered

            winning_label = decide_outcome(market, result)
            if winning_label is None:
                logger.info("No usable score for %s; leaving wagers pending", market.name)
                continue

            pending = ledger.list_wagers_by_market(db, market.external_id, WAGER_PENDING)
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Could not load wagers for event %s: %s", result.id, exc)
            summary.errors.append(f"event {result.id}: {exc.__class__.__name__}")
            continue
        summary.markets_matched += 1

        for wager in pending:
            won = wager.selected_side == winning_label
            wager_id = wager.id
            try:
                settled = _settle_one(db, wager, won)
            except StorageError as exc:
                logger.error("Wager %d could not be settled: %s", wager_id, exc)
                summary.errors.append(f"wager {wager_id}: {exc}")
                continue
            if not settled:
                logger.info("Wager %d already settled; skipping", wager.id)
                continue
            summary.resolved += 1
            if won:
                summary.won += 1
            else:
                summary.lost += 1
            logger.info(
                "%s: wager %d (%s on %s) | stake %.2f @ %.2f",
                "WIN" if won else "LOSS", wager.id, wager.selected_side,
                wager.market_name, wager.stake_amount, wager.odds,
            )

    if summary.resolved and notifier is not None:
        notifier.notify(WAGERS_CHANGED)
        notifier.notify(BALANCES_CHANGED)

    logger.info(
        "Settlement done: %d wagers resolved across %d completed events",
        summary.resolved, summary.completed_events,
    )
    return summary


def run_auto_settlement(
    db: Session,
    client: OddsFeedClient,
    notifier: Optional[Notifier] = None,
) -> Dict:
    """
    Fetch completed scores and settle.  Feed and store failures are
    reported in the returned summary, never raised.
    """
    logger.info("Starting auto settlement")
    try:
        results = client.fetch_completed_events()
    except FeedError as exc:
        logger.error("Scores fetch failed: %s", exc)
        record_fetch(db, "odds_api_scores", False, 0, str(exc), client.last_response_ms)
        return {"ok": False, "error": str(exc), **SettlementSummary(errors=[str(exc)]).to_dict()}

    record_fetch(db, "odds_api_scores", True, len(results), response_ms=client.last_response_ms)

    try:
        summary = settle_completed_events(db, results, client.config, notifier)
    except CoinbetError as exc:
        logger.error("Settlement aborted: %s", exc, exc_info=True)
        return {"ok": False, "error": str(exc), **SettlementSummary(errors=[str(exc)]).to_dict()}

    if summary.errors:
        return {"ok": False, "error": summary.errors[0], **summary.to_dict()}
    return {"ok": True, **summary.to_dict()}


# ---------------------------------------------------------------------------
# Manual resolution
# ---------------------------------------------------------------------------

def settle_wager(
    db: Session,
    wager_id: int,
    result: str,
    notifier: Optional[Notifier] = None,
) -> Wager:
    """
    Resolve one wager to "won" or "lost" by hand.

    Raises ValidationError for any other result, NotFoundError for an
    unknown wager and ConflictError if it is no longer pending.
    """
    if result not in (WAGER_WON, WAGER_LOST):
        raise ValidationError("result must be 'won' or 'lost'")

    wager = ledger.get_wager(db, wager_id)
    if wager is None:
        raise NotFoundError(f"Wager {wager_id} not found")
    if wager.status != WAGER_PENDING:
        raise ConflictError(f"Wager {wager_id} is already {wager.status}")

    if not _settle_one(db, wager, result == WAGER_WON):
        raise ConflictError(f"Wager {wager_id} was settled concurrently")

    db.refresh(wager)
    logger.info("Wager %d resolved manually as %s", wager_id, result)

    if notifier is not None:
        notifier.notify(WAGERS_CHANGED, {"account_id": wager.account_id})
        notifier.notify(BALANCES_CHANGED, {"account_id": wager.account_id})
    return wager
