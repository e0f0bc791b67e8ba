"""
Core: shared exception taxonomy used across the engine, scheduler and API server.
"""
