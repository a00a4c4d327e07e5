"""Feed-level configuration: all odds-feed constants in one place.

:class:`FeedConfig` is a frozen dataclass carrying everything that
differs between competitions pulled from The Odds API: the sport key,
the label baked into market names, the region selector and the
external-id namespace used to decide which markets a reconciliation pass
is allowed to prune.

Typical usage::

    from coinbet.core.feed_config import FeedConfig

    cfg = FeedConfig.from_env()

    # Override a single field for a one-off run:
    from dataclasses import replace
    league_cfg = replace(cfg, sport_key="soccer_epl", label="Premier League")
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final

#: Base URL of The Odds API (v4).
ODDS_API_BASE_URL: Final[str] = "https://api.the-odds-api.com/v4"

#: Label a wager carries when it backs the draw.
DRAW_LABEL: Final[str] = "Draw"

#: Prefix for markets created by hand; never in the feed namespace.
MANUAL_ID_PREFIX: Final[str] = "manual_"


@dataclass(frozen=True)
class FeedConfig:
    """Immutable configuration bundle for a single feed competition.

    Attributes:
        sport_key: The Odds API sport key, e.g. ``"soccer_england_efl_cup"``.
        label: Competition label appended to market names,
            ``"Red vs Blue (EFL Cup)"``.
        market_type: Stored on markets and wagers (``"soccer"``).
        regions: Bookmaker region selector passed to the odds endpoint.
        market_key: Bookmaker market consumed for pricing.  Only
            head-to-head markets carry side/draw prices.
        id_prefix: Namespace prefix for external ids.  Pruning only ever
            touches rows that start with this prefix.
        scores_days_from: Look-back window for the scores endpoint.
        timeout_seconds: Per-request network timeout.
        cooldown_seconds: Minimum interval between odds fetches.
    """

    sport_key: str = "soccer_england_efl_cup"
    label: str = "EFL Cup"
    market_type: str = "soccer"
    regions: str = "uk"
    market_key: str = "h2h"
    id_prefix: str = "odds_"
    scores_days_from: int = 3
    timeout_seconds: float = 10.0
    cooldown_seconds: float = 450.0

    @classmethod
    def efl_cup(cls) -> FeedConfig:
        """English League Cup, UK books, decimal head-to-head prices."""
        return cls()

    @classmethod
    def from_env(cls) -> FeedConfig:
        """Build from environment variables, falling back to :meth:`efl_cup`."""
        base = cls.efl_cup()
        return cls(
            sport_key=os.getenv("ODDS_SPORT_KEY", base.sport_key),
            label=os.getenv("ODDS_SPORT_LABEL", base.label),
            market_type=os.getenv("ODDS_MARKET_TYPE", base.market_type),
            regions=os.getenv("ODDS_API_REGIONS", base.regions),
            scores_days_from=int(os.getenv("SCORES_DAYS_FROM", str(base.scores_days_from))),
            timeout_seconds=float(os.getenv("ODDS_API_TIMEOUT_SECONDS", str(base.timeout_seconds))),
            cooldown_seconds=float(
                os.getenv("ODDS_SYNC_COOLDOWN_SECONDS", str(base.cooldown_seconds))
            ),
        )

    # ------------------------------------------------------------------ #
    #  Convenience accessors                                               #
    # ------------------------------------------------------------------ #

    def external_id(self, feed_event_id: str) -> str:
        """Namespace a feed event id: ``"abc123"`` -> ``"odds_abc123"``."""
        return f"{self.id_prefix}{feed_event_id}"

    def market_name(self, side_a: str, side_b: str) -> str:
        """Deterministic display name for a two-sided market."""
        return f"{side_a} vs {side_b} ({self.label})"
