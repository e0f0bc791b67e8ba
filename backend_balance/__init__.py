"""
Backend Balance: balance and rule engine for the freedom/security platform.

Keeps every user's freedom, security and reputation scores, the system-wide
balance between the two axes, an append-only ledger of balance events, and
the community rules voted into enforcement. Modular layout: balance engine,
database, scheduler, API server.
"""

__version__ = "0.1.0"
