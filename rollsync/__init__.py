"""rollsync: county roll reconciliation and value estimation.

Flow: feed → staging → reconciliation → portfolios → ledger close.
Value estimation runs independently over the reconciled store.
"""

__version__ = "0.1.0"
