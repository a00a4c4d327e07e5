"""
Best-effort event fan-out.

The core calls ``notify`` after a state change has been committed.
Subscribers are called synchronously.  An exception raised by a
subscriber is logged and discarded; the change it reports stays committed.
"""

import logging
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

MARKETS_CHANGED = "markets_changed"
WAGERS_CHANGED = "wagers_changed"
BALANCES_CHANGED = "balances_changed"

Listener = Callable[[str, Optional[Dict]], None]


class Notifier:
    """
    In-process event sink.

    Usage::

        notifier = Notifier()
        notifier.subscribe(lambda name, payload: print(name, payload))
        notifier.notify(WAGERS_CHANGED, {"account_id": 7})
    """

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        """Register a callback fired for every event."""
        self._listeners.append(listener)

    def notify(self, event_name: str, payload: Optional[Dict] = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event_name, payload)
            except Exception as exc:
                logger.warning("Notification listener failed for %s: %s", event_name, exc)


def log_listener(event_name: str, payload: Optional[Dict]) -> None:
    logger.info("Event %s %s", event_name, payload or {})


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_notifier = Notifier()
_notifier.subscribe(log_listener)


def get_notifier() -> Notifier:
    return _notifier
