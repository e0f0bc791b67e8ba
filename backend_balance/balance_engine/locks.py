"""
In-process advisory locks keyed by user id and rule id.

Per-user paths hold one user lock around their read-modify-write transaction.
Global paths lock the whole snapshot of user ids, always in ascending order,
so they serialize against every per-user path without deadlocking.
Rule paths take the rule lock before any user lock.

Entries live in a WeakValueDictionary: a key's lock exists while some thread
holds or waits on it and is dropped afterwards.
"""

from __future__ import annotations

import threading
import weakref
from contextlib import ExitStack, contextmanager
from typing import Any, Hashable, Iterable, Iterator


class _KeyLock:
    """threading.Lock wrapper; plain locks cannot be weakly referenced."""

    __slots__ = ("_lock", "__weakref__")

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def __enter__(self) -> "_KeyLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._lock.release()


class LockRegistry:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[Hashable, _KeyLock] = weakref.WeakValueDictionary()

    def live_count(self) -> int:
        """Number of keys with a live lock."""
        with self._guard:
            return len(self._locks)

    def _lock_for(self, key: Hashable) -> _KeyLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = _KeyLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def user(self, user_id: int) -> Iterator[None]:
        with self._lock_for(("user", user_id)):
            yield

    @contextmanager
    def users(self, user_ids: Iterable[int]) -> Iterator[None]:
        with ExitStack() as stack:
            for user_id in sorted(set(user_ids)):
                stack.enter_context(self._lock_for(("user", user_id)))
            yield

    @contextmanager
    def rule(self, rule_id: int) -> Iterator[None]:
        with self._lock_for(("rule", rule_id)):
            yield
