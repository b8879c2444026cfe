"""
Peer-to-Peer Loan Tracker

Tracks loans between owners (lenders) and borrowers: amortized terms,
an append-only payment ledger, and an idempotent reminder scheduler.
All amounts use Decimal.
"""

__version__ = "1.0.0"
