"""
Tests for the per-user / per-rule advisory lock registry.
"""

from __future__ import annotations

import threading

from backend_balance.balance_engine.locks import LockRegistry


def test_lock_entries_are_dropped_after_use():
    registry = LockRegistry()
    with registry.user(1):
        assert registry.live_count() == 1
        with registry.rule(1):
            assert registry.live_count() == 2
    assert registry.live_count() == 0

    with registry.users([3, 1, 2, 3]):
        assert registry.live_count() == 3
    assert registry.live_count() == 0


def test_user_lock_excludes_other_threads():
    registry = LockRegistry()
    entered = threading.Event()
    release = threading.Event()
    order = []

    def holder():
        with registry.user(7):
            entered.set()
            release.wait(timeout=5)
            order.append("holder")

    def waiter():
        with registry.users([7, 8]):
            order.append("waiter")

    first = threading.Thread(target=holder)
    first.start()
    assert entered.wait(timeout=5)
    second = threading.Thread(target=waiter)
    second.start()
    second.join(timeout=0.2)
    assert order == []
    release.set()
    first.join(timeout=5)
    second.join(timeout=5)
    assert order == ["holder", "waiter"]
    assert registry.live_count() == 0
