"""
Wager placement.

Validation runs before anything is written, in a fixed order, and each
failure has its own error so the caller can show a specific reason:

  1. stake is a positive finite number         ValidationError
  2. market exists                             NotFoundError
  3. side is side_a, side_b or a priced draw   ValidationError
  4. resolved odds are positive and finite     ValidationError
  5. account exists                            NotFoundError
  6. balance covers the stake                  InsufficientBalance

The debit and the wager insert then commit together.  The debit is a
conditional UPDATE, so a balance drained by a concurrent request between
step 6 and the write is caught at write time and nothing is applied.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from coinbet.core.feed_config import DRAW_LABEL
from coinbet.core.odds_math import COIN_PRECISION, as_positive_finite
from coinbet.errors import InsufficientBalance, NotFoundError, ValidationError
from coinbet.models import Market, Wager, atomic
from coinbet.services import ledger, market_store
from coinbet.services.notifier import BALANCES_CHANGED, WAGERS_CHANGED, Notifier

logger = logging.getLogger(__name__)


def resolve_odds(market: Market, selected_side: str) -> Optional[float]:
    """
    Decimal odds for ``selected_side`` on ``market``.

    Raises ValidationError if the side is not offered.  Returns the raw
    stored price; the caller checks that it is usable.
    """
    if selected_side == market.side_a:
        return market.odds_a
    if selected_side == market.side_b:
        return market.odds_b
    if selected_side == DRAW_LABEL and market.has_draw and market.odds_draw is not None:
        return market.odds_draw
    raise ValidationError("Invalid selected side / odds not available")


def place_wager(
    db: Session,
    account_id: int,
    market_id: int,
    stake_amount,
    selected_side: str,
    notifier: Optional[Notifier] = None,
) -> Wager:
    """Validate and atomically debit the stake and record a pending wager."""
    stake = as_positive_finite(stake_amount)
    if stake is not None:
        stake = round(stake, COIN_PRECISION)
    if not stake:
        raise ValidationError("Stake must be a positive amount")

    market = market_store.get_market(db, market_id)
    if market is None:
        raise NotFoundError("Market not found")

    odds = as_positive_finite(resolve_odds(market, selected_side))
    if odds is None:
        raise ValidationError("Odds not available for the selected side")

    account = ledger.get_account(db, account_id)
    if account is None:
        raise NotFoundError("Account not found")
    if round(account.coin_balance - stake, COIN_PRECISION) < 0:
        raise InsufficientBalance("Insufficient balance")

    with atomic(db):
        ledger.adjust_balance(db, account_id, -stake)
        wager = ledger.create_wager(
            db,
            account_id=account_id,
            market_external_id=market.external_id,
            market_name=market.name,
            market_type=market.market_type,
            stake_amount=stake,
            odds=odds,
            selected_side=selected_side,
        )

    db.refresh(wager)
    logger.info(
        "Wager %d placed: account %d, %.2f on %s @ %.2f (%s)",
        wager.id, account_id, stake, selected_side, odds, wager.market_name,
    )

    if notifier is not None:
        notifier.notify(WAGERS_CHANGED, {"account_id": account_id})
        notifier.notify(BALANCES_CHANGED, {"account_id": account_id})
    return wager
