"""
Pydantic request/response schemas for the Coinbet API.

Using explicit schemas instead of raw dicts prevents mass-assignment
on ORM models and generates accurate OpenAPI docs.  Business validation
(stake vs balance, side vs market) stays in the services so it applies
to every caller, not just HTTP.
"""

from __future__ import annotations

from typing import Literal, Optional
from datetime import datetime

from pydantic import BaseModel, Field, field_validator


# ---------------------------------------------------------------------------
# Markets
# ---------------------------------------------------------------------------

class MarketResponse(BaseModel):
    """A market as served to clients."""
    id: int
    external_id: str
    name: str
    market_type: str
    start_time: Optional[datetime]
    side_a: str
    side_b: str
    odds_a: float
    odds_b: float
    odds_draw: Optional[float]
    has_draw: bool

    class Config:
        from_attributes = True


class MarketListResponse(BaseModel):
    """Structure for GET /api/markets."""
    success: bool = True
    odds_sync: dict
    markets: list[MarketResponse]


class ManualMarketCreate(BaseModel):
    """Payload for POST /admin/markets."""

    side_a: str = Field(..., min_length=1, max_length=120)
    side_b: str = Field(..., min_length=1, max_length=120)
    odds_a: float = Field(..., gt=1.0, description="Decimal odds for side A")
    odds_b: float = Field(..., gt=1.0, description="Decimal odds for side B")
    odds_draw: Optional[float] = Field(None, gt=1.0)
    market_type: str = Field("custom", max_length=40)
    start_time: Optional[datetime] = None
    name: Optional[str] = Field(None, max_length=200)

    @field_validator("side_b")
    @classmethod
    def sides_differ(cls, v: str, info) -> str:
        if v == info.data.get("side_a"):
            raise ValueError("side_a and side_b must differ")
        return v


# ---------------------------------------------------------------------------
# Wagers
# ---------------------------------------------------------------------------

class WagerCreate(BaseModel):
    """
    Payload for POST /api/wagers.

    stake_amount is only type-checked here; the placement service owns
    the positive-finite check.
    """

    account_id: int
    market_id: int
    stake_amount: float
    selected_side: str = Field(..., min_length=1, max_length=120)

    model_config = {
        "json_schema_extra": {
            "example": {
                "account_id": 1,
                "market_id": 12,
                "stake_amount": 40,
                "selected_side": "Red",
            }
        }
    }


class WagerResponse(BaseModel):
    id: int
    account_id: int
    market_external_id: str
    market_name: str
    market_type: Optional[str]
    stake_amount: float
    odds: float
    selected_side: str
    status: str
    payout: Optional[float]
    created_at: Optional[datetime]
    settled_at: Optional[datetime]

    class Config:
        from_attributes = True


class WagerResolve(BaseModel):
    """Payload for POST /admin/resolve-wager."""
    wager_id: int
    result: Literal["won", "lost"]


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

class AccountCreate(BaseModel):
    """Payload for POST /admin/accounts."""
    name: str = Field(..., min_length=1, max_length=120)
    email: Optional[str] = Field(None, max_length=254)
    coin_balance: float = Field(0.0, ge=0)


class AccountResponse(BaseModel):
    id: int
    name: str
    email: Optional[str]
    coin_balance: float

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

class SettlementResponse(BaseModel):
    """Response from /admin/auto-resolve."""
    ok: bool
    resolved: int
    won: int
    lost: int
    completed_events: int
    markets_matched: int
    errors: list[str]
    timestamp: str
    error: Optional[str] = None
