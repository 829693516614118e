"""Record locks held by sessions on a single node."""

from __future__ import annotations

import threading


class LockManager:
    """Grants at most one session a lock on each record key."""

    def __init__(self) -> None:
        self._locks: dict[str, int] = {}
        self._mutex = threading.Lock()

    def lock(self, key: str, session_id: int) -> bool:
        """Take the lock on ``key`` for the session; False if it is already held."""
        with self._mutex:
            if key in self._locks:
                return False
            self._locks[key] = session_id
            return True

    def unlock(self, key: str, session_id: int) -> None:
        """Release the lock on ``key`` if the session holds it."""
        with self._mutex:
            if self._locks.get(key) == session_id:
                del self._locks[key]

    def holder(self, key: str) -> int | None:
        """Return the session holding ``key``, or None if it is free."""
        with self._mutex:
            return self._locks.get(key)

    def __contains__(self, key: object) -> bool:
        with self._mutex:
            return key in self._locks