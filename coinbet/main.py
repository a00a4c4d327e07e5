"""
FastAPI application for Coinbet
Thin REST layer over the sync / settlement / ledger services, plus the
scheduled settlement job
"""

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from contextlib import asynccontextmanager
from datetime import datetime
import logging
import os

from coinbet.models import get_db, atomic, SessionLocal
from coinbet.auth import verify_admin_key
from coinbet.core.feed_config import FeedConfig
from coinbet.errors import (
    CoinbetError,
    ConflictError,
    InsufficientBalance,
    NotFoundError,
    StorageError,
    ValidationError,
)
from coinbet.services import ledger, market_store
from coinbet.services.notifier import MARKETS_CHANGED, Notifier, get_notifier
from coinbet.services.odds_feed import OddsFeedClient
from coinbet.services.placement import place_wager
from coinbet.services.reconciler import SyncCooldown, refresh_markets
from coinbet.services.settlement import run_auto_settlement, settle_wager
from coinbet.schemas import (
    AccountCreate,
    AccountResponse,
    ManualMarketCreate,
    MarketListResponse,
    MarketResponse,
    SettlementResponse,
    WagerCreate,
    WagerResolve,
    WagerResponse,
)

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Scheduler instance
scheduler = BackgroundScheduler()


# ============================================================================
# SHARED COLLABORATORS
# ============================================================================

# One instance per process, created at import
_feed_client = OddsFeedClient(config=FeedConfig.from_env())
_sync_cooldown = SyncCooldown(_feed_client.config.cooldown_seconds)


def get_feed_client() -> OddsFeedClient:
    return _feed_client


def get_sync_cooldown() -> SyncCooldown:
    """Process-wide cooldown shared by every refresh caller."""
    return _sync_cooldown


# ============================================================================
# SCHEDULED JOB
# ============================================================================

def _auto_settle_job():
    """Settle wagers on completed events. Runs every AUTO_SETTLE_INTERVAL_MIN."""
    db = SessionLocal()
    try:
        results = run_auto_settlement(db, get_feed_client(), get_notifier())
        logger.info("Auto settlement: %s", results)
    except Exception as exc:
        logger.error("Auto settlement job failed: %s", exc, exc_info=True)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    logger.info("Starting Coinbet")

    auto_settle = os.getenv("AUTO_SETTLE_ENABLED", "false").lower() == "true"
    if auto_settle:
        interval_min = int(os.getenv("AUTO_SETTLE_INTERVAL_MIN", "30"))
        scheduler.add_job(
            _auto_settle_job,
            IntervalTrigger(minutes=interval_min),
            id="auto_settle",
            name="Settle Completed Events",
            replace_existing=True,
        )
        scheduler.start()
        logger.info("Scheduler started: auto settlement every %dmin", interval_min)

    yield

    logger.info("Shutting down Coinbet")
    if scheduler.running:
        scheduler.shutdown()


app = FastAPI(
    title="Coinbet",
    description="Virtual-coin wagering on live sports odds",
    version="1.0",
    lifespan=lifespan,
)

_origins = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Admin-Key"],
)


# ============================================================================
# ERROR MAPPING
# ============================================================================

_STATUS_BY_ERROR = (
    (InsufficientBalance, 400),
    (ValidationError, 400),
    (NotFoundError, 404),
    (ConflictError, 409),
    (StorageError, 500),
)


@app.exception_handler(CoinbetError)
async def coinbet_error_handler(request: Request, exc: CoinbetError):
    status_code = 500
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"success": False, "error": str(exc)})


# ============================================================================
# HEALTH
# ============================================================================

@app.get("/")
def root():
    return {"message": "Coinbet backend is running", "timestamp": datetime.utcnow().isoformat()}


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.error("Health check database error: %s", e)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected"},
        )


# ============================================================================
# MARKETS
# ============================================================================

@app.get("/api/markets", response_model=MarketListResponse)
def list_markets(
    db: Session = Depends(get_db),
    client: OddsFeedClient = Depends(get_feed_client),
    cooldown: SyncCooldown = Depends(get_sync_cooldown),
    notifier: Notifier = Depends(get_notifier),
):
    """Refresh from the feed if the cooldown allows, then serve stored markets."""
    odds_sync = refresh_markets(db, client, cooldown, notifier)
    markets = market_store.list_markets(db)
    return {
        "success": True,
        "odds_sync": odds_sync,
        "markets": [MarketResponse.model_validate(m) for m in markets],
    }


@app.get("/api/markets/{market_id}")
def get_market(market_id: int, db: Session = Depends(get_db)):
    market = market_store.get_market(db, market_id)
    if market is None:
        raise NotFoundError("Market not found")
    return {"success": True, "market": MarketResponse.model_validate(market)}


# ============================================================================
# WAGERS & ACCOUNTS
# ============================================================================

@app.post("/api/wagers")
def create_wager(
    payload: WagerCreate,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    wager = place_wager(
        db,
        account_id=payload.account_id,
        market_id=payload.market_id,
        stake_amount=payload.stake_amount,
        selected_side=payload.selected_side,
        notifier=notifier,
    )
    return {"success": True, "wager": WagerResponse.model_validate(wager)}


@app.get("/api/accounts/{account_id}/balance")
def get_balance(account_id: int, db: Session = Depends(get_db)):
    account = ledger.get_account(db, account_id)
    if account is None:
        raise NotFoundError("Account not found")
    return {"success": True, "account": AccountResponse.model_validate(account)}


@app.get("/api/accounts/{account_id}/wagers")
def get_wagers(account_id: int, db: Session = Depends(get_db)):
    if ledger.get_account(db, account_id) is None:
        raise NotFoundError("Account not found")
    wagers = ledger.list_wagers_for_account(db, account_id)
    return {"success": True, "wagers": [WagerResponse.model_validate(w) for w in wagers]}


# ============================================================================
# ADMIN ENDPOINTS
# ============================================================================

@app.post("/admin/accounts")
def open_account(
    payload: AccountCreate,
    admin: str = Depends(verify_admin_key),
    db: Session = Depends(get_db),
):
    with atomic(db):
        account = ledger.open_account(db, payload.name, payload.email, payload.coin_balance)
    db.refresh(account)
    logger.info("Account %d opened with %.2f coins", account.id, account.coin_balance)
    return {"success": True, "account": AccountResponse.model_validate(account)}


@app.post("/admin/markets")
def add_market(
    payload: ManualMarketCreate,
    admin: str = Depends(verify_admin_key),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    with atomic(db):
        market = market_store.create_manual_market(
            db,
            side_a=payload.side_a,
            side_b=payload.side_b,
            odds_a=payload.odds_a,
            odds_b=payload.odds_b,
            odds_draw=payload.odds_draw,
            market_type=payload.market_type,
            start_time=payload.start_time,
            name=payload.name,
        )
    db.refresh(market)
    notifier.notify(MARKETS_CHANGED)
    return {"success": True, "market": MarketResponse.model_validate(market)}


@app.post("/admin/force-refresh")
def force_refresh(
    admin: str = Depends(verify_admin_key),
    db: Session = Depends(get_db),
    client: OddsFeedClient = Depends(get_feed_client),
    cooldown: SyncCooldown = Depends(get_sync_cooldown),
    notifier: Notifier = Depends(get_notifier),
):
    """Bypass the cooldown once."""
    logger.info("Manual odds refresh triggered")
    return {"success": True, "odds_sync": refresh_markets(db, client, cooldown, notifier, force=True)}


@app.post("/admin/auto-resolve", response_model=SettlementResponse)
def auto_resolve(
    admin: str = Depends(verify_admin_key),
    db: Session = Depends(get_db),
    client: OddsFeedClient = Depends(get_feed_client),
    notifier: Notifier = Depends(get_notifier),
):
    logger.info("Manual settlement triggered")
    return run_auto_settlement(db, client, notifier)


@app.post("/admin/resolve-wager")
def resolve_wager(
    payload: WagerResolve,
    admin: str = Depends(verify_admin_key),
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    wager = settle_wager(db, payload.wager_id, payload.result, notifier)
    return {"success": True, "wager": WagerResponse.model_validate(wager)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
