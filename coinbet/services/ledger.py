"""
Ledger Store: accounts and wagers.

Public API:
  open_account(db, name, email, coin_balance)        → Account
  get_account(db, account_id)                        → Optional[Account]
  adjust_balance(db, account_id, delta)              → float  (new balance)
  create_wager(db, ...)                              → Wager
  get_wager(db, wager_id)                            → Optional[Wager]
  list_wagers_by_market(db, market_external_id, st)  → List[Wager]
  list_wagers_for_account(db, account_id)            → List[Wager]
  transition_wager_status(db, id, from_st, to_st)    → bool

Balance changes and status transitions are single conditional UPDATE
statements (compare-and-set), so two sessions touching the same row can
never lose an update, overdraw an account, or settle a wager twice.
Nothing here commits: callers wrap a unit of work in models.atomic().
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import Numeric, cast, func
from sqlalchemy.orm import Session

from coinbet.core.odds_math import COIN_PRECISION
from coinbet.errors import InsufficientBalance, NotFoundError, ValidationError
from coinbet.models import Account, Wager, WAGER_PENDING, WAGER_STATUSES

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

def open_account(
    db: Session,
    name: str,
    email: Optional[str] = None,
    coin_balance: float = 0.0,
) -> Account:
    if coin_balance < 0:
        raise ValidationError("Opening balance cannot be negative")
    account = Account(name=name, email=email, coin_balance=round(coin_balance, COIN_PRECISION))
    db.add(account)
    db.flush()
    return account


def get_account(db: Session, account_id: int) -> Optional[Account]:
    return db.query(Account).filter(Account.id == account_id).first()


def adjust_balance(db: Session, account_id: int, delta: float) -> float:
    """
    Atomically add ``delta`` (negative to debit) to an account balance.

    The new balance is rounded to coin precision inside the UPDATE, and
    the UPDATE only matches while that rounded balance stays >= 0, so a
    concurrent debit can never drive the account negative.

    Raises NotFoundError for an unknown account and InsufficientBalance
    when the debit would overdraw it.  Returns the new balance.
    """
    delta = round(delta, COIN_PRECISION)
    new_balance = func.round(cast(Account.coin_balance + delta, Numeric), COIN_PRECISION)
    updated = (
        db.query(Account)
        .filter(Account.id == account_id, new_balance >= 0)
        .update(
            {Account.coin_balance: new_balance},
            synchronize_session="fetch",
        )
    )
    if updated == 0:
        if get_account(db, account_id) is None:
            raise NotFoundError(f"Account {account_id} not found")
        raise InsufficientBalance("Insufficient balance")

    balance = db.query(Account.coin_balance).filter(Account.id == account_id).scalar()
    logger.debug("Balance adjusted: account %d %+.2f -> %.2f", account_id, delta, balance)
    return balance


# ---------------------------------------------------------------------------
# Wagers
# ---------------------------------------------------------------------------

def create_wager(
    db: Session,
    account_id: int,
    market_external_id: str,
    market_name: str,
    stake_amount: float,
    odds: float,
    selected_side: str,
    market_type: Optional[str] = None,
) -> Wager:
    wager = Wager(
        account_id=account_id,
        market_external_id=market_external_id,
        market_name=market_name,
        market_type=market_type,
        stake_amount=stake_amount,
        odds=odds,
        selected_side=selected_side,
        status=WAGER_PENDING,
        created_at=datetime.utcnow(),
    )
    db.add(wager)
    db.flush()
    return wager


def get_wager(db: Session, wager_id: int) -> Optional[Wager]:
    return db.query(Wager).filter(Wager.id == wager_id).first()


def list_wagers_by_market(
    db: Session,
    market_external_id: str,
    status: Optional[str] = WAGER_PENDING,
) -> List[Wager]:
    query = db.query(Wager).filter(Wager.market_external_id == market_external_id)
    if status is not None:
        query = query.filter(Wager.status == status)
    return query.order_by(Wager.id.asc()).all()


def list_wagers_for_account(db: Session, account_id: int) -> List[Wager]:
    return (
        db.query(Wager)
        .filter(Wager.account_id == account_id)
        .order_by(Wager.created_at.desc(), Wager.id.desc())
        .all()
    )


def transition_wager_status(
    db: Session,
    wager_id: int,
    from_status: str,
    to_status: str,
    payout: Optional[float] = None,
) -> bool:
    """
    Move a wager from ``from_status`` to ``to_status`` if it is still there.

    Returns False (and changes nothing) when the wager has already left
    ``from_status``, which is what makes settlement idempotent.
    """
    if from_status not in WAGER_STATUSES or to_status not in WAGER_STATUSES:
        raise ValidationError(f"Unknown wager status transition {from_status!r} -> {to_status!r}")

    updated = (
        db.query(Wager)
        .filter(Wager.id == wager_id, Wager.status == from_status)
        .update(
            {
                Wager.status: to_status,
                Wager.payout: payout,
                Wager.settled_at: datetime.utcnow(),
            },
            synchronize_session="fetch",
        )
    )
    return updated == 1
