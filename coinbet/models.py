"""
Database models for Coinbet
SQLAlchemy ORM; PostgreSQL in production, SQLite for local runs and tests
"""

from sqlalchemy import (
    create_engine,
    CheckConstraint,
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Boolean,
    Text,
    ForeignKey,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker, relationship
from contextlib import contextmanager
from datetime import datetime
import os
from dotenv import load_dotenv

from coinbet.errors import CoinbetError, StorageError

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./coinbet.db")

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

# pool_pre_ping=True keeps long-lived Postgres connections healthy
engine = create_engine(DATABASE_URL, pool_pre_ping=True, echo=False, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

# Wager lifecycle
WAGER_PENDING = "pending"
WAGER_WON = "won"
WAGER_LOST = "lost"
WAGER_STATUSES = (WAGER_PENDING, WAGER_WON, WAGER_LOST)


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session):
    """
    Commit everything done inside the block as one unit, or nothing.

    Domain errors are re-raised unchanged after rollback; database errors
    are re-raised as StorageError.
    """
    try:
        yield db
        db.commit()
    except CoinbetError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(f"Database error: {exc.__class__.__name__}: {exc}") from exc
    except Exception:
        db.rollback()
        raise


class Market(Base):
    """A wagering opportunity on one sporting event"""

    __tablename__ = "markets"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String, unique=True, index=True, nullable=False)  # odds_<feed id> | manual_<hex>
    name = Column(String, nullable=False, index=True)  # "Red vs Blue (EFL Cup)"
    market_type = Column(String, nullable=False, default="soccer")
    start_time = Column(DateTime)

    side_a = Column(String, nullable=False)  # Home team
    side_b = Column(String, nullable=False)  # Away team

    # Best available decimal prices
    odds_a = Column(Float, nullable=False)
    odds_b = Column(Float, nullable=False)
    odds_draw = Column(Float)
    has_draw = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Account(Base):
    """Coin-holding user account. Credentials live outside this service."""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True)
    coin_balance = Column(Float, nullable=False, default=0.0)

    created_at = Column(DateTime, default=datetime.utcnow)

    wagers = relationship("Wager", back_populates="account")

    __table_args__ = (CheckConstraint("coin_balance >= 0", name="ck_accounts_balance_non_negative"),)


class Wager(Base):
    """A stake on one outcome of one market at locked-in odds"""

    __tablename__ = "wagers"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)

    # Snapshot of the market at placement time. market_external_id is the
    # settlement join key; market_name is a display label only.
    market_external_id = Column(String, nullable=False, index=True)
    market_name = Column(String, nullable=False)
    market_type = Column(String)

    stake_amount = Column(Float, nullable=False)
    odds = Column(Float, nullable=False)  # Decimal multiplier
    selected_side = Column(String, nullable=False)  # side_a | side_b | "Draw"

    status = Column(String, nullable=False, default=WAGER_PENDING, index=True)
    payout = Column(Float)  # Credited amount, set when won

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    settled_at = Column(DateTime)

    account = relationship("Account", back_populates="wagers")

    __table_args__ = (
        CheckConstraint("stake_amount > 0", name="ck_wagers_stake_positive"),
        CheckConstraint("odds > 0", name="ck_wagers_odds_positive"),
        CheckConstraint("status IN ('pending', 'won', 'lost')", name="ck_wagers_status"),
    )


class DataFetch(Base):
    """Track upstream fetches for monitoring feed health"""

    __tablename__ = "data_fetches"

    id = Column(Integer, primary_key=True, index=True)
    fetch_time = Column(DateTime, default=datetime.utcnow, index=True)
    data_source = Column(String, nullable=False, index=True)  # "odds_api_odds", "odds_api_scores"
    success = Column(Boolean, nullable=False)
    records_fetched = Column(Integer)
    error_message = Column(Text)
    response_time_ms = Column(Integer)

    created_at = Column(DateTime, default=datetime.utcnow)


# Create all tables
def init_db():
    """Initialize database tables"""
    Base.metadata.create_all(bind=engine)


if __name__ == "__main__":
    init_db()
