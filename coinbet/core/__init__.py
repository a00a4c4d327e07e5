"""Pure building blocks for the Coinbet core.

- ``odds_math``   : price coercion, best-price selection, payouts
- ``feed_config`` : per-competition feed constants and id namespacing

Nothing in this package imports from ``coinbet.services`` or ``coinbet.models``.
"""
