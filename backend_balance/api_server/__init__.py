"""
API server package: HTTP interface to the balance engine.

Exposes system and user balance, ledger history, community rules and moderation
hooks. Authentication is upstream; the acting user arrives in the X-User-Id header.
"""
