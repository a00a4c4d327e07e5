"""
Error taxonomy for the sync / settlement / ledger core.

ValidationError and NotFoundError are raised before any mutation.
StorageError and ConflictError come out of an atomic unit that has
already been rolled back.  Feed errors never escape the refresh or
settlement passes; they are reported as a degraded sync status.
"""


class CoinbetError(Exception):
    """Base class for all domain errors."""


class ValidationError(CoinbetError):
    """Bad input to an operation; request rejected with no state change."""


class InsufficientBalance(ValidationError):
    """Account balance is below the requested stake."""


class NotFoundError(CoinbetError):
    """Referenced market, account or wager does not exist."""


class ConflictError(CoinbetError):
    """A concurrent mutation prevented an atomic step; the caller may retry."""


class StorageError(CoinbetError):
    """Durable store failure; the operation was rolled back."""


class FeedError(CoinbetError):
    """Upstream odds feed failure.  Never fatal to the process."""


class FeedUnavailable(FeedError):
    """Network error, timeout, non-2xx status or unreadable body."""


class FeedMisconfigured(FeedError):
    """Required credentials (API key) are missing."""
