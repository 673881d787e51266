"""
Lending Service

Catalog inventory with a per-borrower lending ledger, optimistic
concurrency control on every write, and a hash-chained audit trail.
"""

__version__ = "1.0.0"
