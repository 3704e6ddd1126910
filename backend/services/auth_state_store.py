"""In-memory store for pending OAuth authorizations with TTL.

Holds the state nonce and PKCE verifier between initiate_auth and the
provider callback. Entries are single-use. Ephemeral: a restart between
consent and callback means the user has to start over.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from application.models.integrations import PendingAuthorization


@dataclass
class _Entry:
    pending: PendingAuthorization
    expires_at: float


class PendingAuthStore:
    """Thread-safe store of pending authorizations keyed by state nonce."""

    def __init__(self, ttl_seconds: int = 600, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._store: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def put(self, pending: PendingAuthorization) -> None:
        """Store a pending authorization. Overwrites if the state already exists."""
        with self._lock:
            self._evict_expired()
            self._store[pending.state] = _Entry(
                pending=pending,
                expires_at=self._clock() + self._ttl,
            )

    def pop(self, state: str) -> Optional[PendingAuthorization]:
        """Retrieve and consume a pending authorization. None if missing/expired."""
        with self._lock:
            entry = self._store.pop(state, None)
            if entry is None:
                return None
            if self._clock() > entry.expires_at:
                return None
            return entry.pending

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired()
            return len(self._store)

    def _evict_expired(self) -> None:
        """Remove expired entries. Must be called with lock held."""
        now = self._clock()
        expired = [k for k, v in self._store.items() if now > v.expires_at]
        for k in expired:
            del self._store[k]
