"""
Session Registry
================
Short-lived, in-memory mapping of our session id → Terra user id.

The session id doubles as Terra's ``reference_id``, so the widget redirect
can be correlated with the browser that started the flow. Entries expire
after ``max_age`` (24h by default): lazily on access, and in bulk by the
background sweeper started from the app lifespan.

One entry per browser session and a single expected write per entry, so
concurrent re-association is last-write-wins with no locking. Data is
lost on restart.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from app.errors import SessionError

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = timedelta(hours=24)


@dataclass
class _SessionEntry:
    terra_user_id: Optional[str]
    created_at: float


class SessionRegistry:
    """Owns the session map. Constructed once at startup and injected."""

    def __init__(
        self,
        max_age: timedelta = DEFAULT_MAX_AGE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, _SessionEntry] = {}
        self._max_age = max_age.total_seconds()
        self._clock = clock

    def size(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._entries

    def created_at(self, session_id: str) -> Optional[float]:
        entry = self._entries.get(session_id)
        return entry.created_at if entry else None

    # ---- Operations --------------------------------------------------------

    def initialize(self, session_id: str) -> None:
        """Create an empty entry. A second call for the same id is a no-op."""
        if session_id in self._entries:
            return
        self._entries[session_id] = _SessionEntry(terra_user_id=None, created_at=self._clock())
        logger.info("Initialized session %s", session_id)

    def store(self, session_id: str, terra_user_id: str) -> None:
        """Associate a Terra user with the session, creating it if needed.

        A different Terra user already on the entry is overwritten. Repeat
        auth is formally reported by Terra's webhook, which this flow does
        not consume, so the latest redirect wins.
        """
        entry = self._entries.get(session_id)
        if entry is None:
            entry = _SessionEntry(terra_user_id=None, created_at=self._clock())
            self._entries[session_id] = entry
        elif entry.terra_user_id and entry.terra_user_id != terra_user_id:
            logger.warning(
                "Session %s already had Terra user %s, overwriting with %s",
                session_id,
                entry.terra_user_id,
                terra_user_id,
            )
        entry.terra_user_id = terra_user_id
        entry.created_at = self._clock()
        logger.info("Stored Terra user for session %s", session_id)

    def get(self, session_id: str) -> Optional[str]:
        """Return the Terra user id, or None if unknown, unassociated or expired.

        Expired entries are evicted here. A hit refreshes the timestamp.
        """
        entry = self._entries.get(session_id)
        if entry is None:
            logger.debug("Session %s not found", session_id)
            return None

        now = self._clock()
        if now - entry.created_at > self._max_age:
            del self._entries[session_id]
            logger.info("Session %s expired, evicted", session_id)
            return None

        if entry.terra_user_id is None:
            return None

        entry.created_at = now
        return entry.terra_user_id

    def require(self, session_id: str) -> str:
        """Like get(), but raises SessionError instead of returning None."""
        terra_user_id = self.get(session_id)
        if not terra_user_id:
            raise SessionError(f"Session {session_id} unknown, expired or not yet confirmed.")
        return terra_user_id

    def discard(self, session_id: str) -> bool:
        """Drop the entry. Returns True if one was removed."""
        removed = self._entries.pop(session_id, None) is not None
        if removed:
            logger.info("Discarded session %s", session_id)
        return removed

    def sweep(self) -> int:
        """Evict every expired entry. Returns how many were removed."""
        cutoff = self._clock() - self._max_age
        expired = [sid for sid, entry in self._entries.items() if entry.created_at < cutoff]
        for sid in expired:
            del self._entries[sid]
        if expired:
            logger.info("Swept %d expired session(s)", len(expired))
        return len(expired)

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Sweep forever. Run as a task; cancel it on shutdown."""
        while True:
            await asyncio.sleep(interval_seconds)
            self.sweep()
