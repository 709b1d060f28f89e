"""
Import Session Store

In-process keyed store of import sessions awaiting confirmation, with TTL
eviction and a single owner per session while it is being confirmed.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Iterator

from ledger.errors import ConflictError, NotFoundError

from .models import ImportSession

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    session: ImportSession
    lock: threading.Lock = field(default_factory=threading.Lock)


class ImportSessionStore:
    """Sessions keyed by import id.

    The store lock guards the maps; each entry has its own lock, held for
    the whole of a confirm. Eviction never removes an entry whose lock is held.
    """

    def __init__(
        self,
        ttl_seconds: int = 1800,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the store.

        Args:
            ttl_seconds: Lifetime of an unconfirmed session
            clock: Returns the current time; injectable for tests
        """
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or datetime.now
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        # import_id -> (user_id, consumed_at)
        self._tombstones: dict[str, tuple[str, datetime]] = {}

    def now(self) -> datetime:
        return self._clock()

    def expiry_from(self, created_at: datetime) -> datetime:
        return created_at + self.ttl

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def put(self, session: ImportSession) -> None:
        """Store a freshly analyzed session."""
        self.evict_expired()
        with self._lock:
            self._entries[session.import_id] = _Entry(session)
        logger.info(
            f"Stored import session {session.import_id} "
            f"({len(session.candidates)} candidates, expires {session.expires_at.isoformat()})"
        )

    def get(self, user_id: str, import_id: str) -> ImportSession:
        """Return a live session owned by the user.

        Raises:
            ConflictError: If the session was already confirmed
            NotFoundError: If the session is unknown, expired or not the user's
        """
        with self._lock:
            self._check_tombstone(user_id, import_id)
            entry = self._entries.get(import_id)
            if entry is None or entry.session.user_id != user_id:
                raise NotFoundError(f"Import session not found: {import_id}")
            if self._is_expired(entry.session):
                raise NotFoundError(f"Import session expired: {import_id}")
            return entry.session

    @contextmanager
    def checkout(self, user_id: str, import_id: str) -> Iterator[ImportSession]:
        """Take exclusive ownership of a session for confirmation.

        On normal exit the session is removed and a tombstone recorded, so a
        later confirm fails with a conflict. If the body raises, the session
        stays available.

        Raises:
            ConflictError: If the session is already confirmed or in flight
            NotFoundError: If the session is unknown, expired or not the user's
        """
        with self._lock:
            self._check_tombstone(user_id, import_id)
            entry = self._entries.get(import_id)
            if entry is None or entry.session.user_id != user_id:
                raise NotFoundError(f"Import session not found: {import_id}")
            if not entry.lock.acquire(blocking=False):
                raise ConflictError(f"Import session {import_id} is already being confirmed")

        try:
            if self._is_expired(entry.session):
                with self._lock:
                    self._entries.pop(import_id, None)
                logger.info(f"Import session {import_id} expired before confirm")
                raise NotFoundError(f"Import session expired: {import_id}")

            yield entry.session

            with self._lock:
                self._entries.pop(import_id, None)
                self._tombstones[import_id] = (user_id, self.now())
        finally:
            entry.lock.release()

    def evict_expired(self) -> int:
        """Drop expired sessions and stale tombstones.

        Returns:
            Number of sessions evicted
        """
        evicted = 0
        now = self.now()

        with self._lock:
            for import_id, entry in list(self._entries.items()):
                if not self._is_expired(entry.session):
                    continue
                if not entry.lock.acquire(blocking=False):
                    continue  # confirm in progress
                try:
                    del self._entries[import_id]
                    evicted += 1
                finally:
                    entry.lock.release()

            for import_id, (_, consumed_at) in list(self._tombstones.items()):
                if now - consumed_at > self.ttl:
                    del self._tombstones[import_id]

        if evicted:
            logger.info(f"Evicted {evicted} expired import sessions")
        return evicted

    def _is_expired(self, session: ImportSession) -> bool:
        return session.expires_at <= self.now()

    def _check_tombstone(self, user_id: str, import_id: str) -> None:
        tombstone = self._tombstones.get(import_id)
        if tombstone is None:
            return
        if tombstone[0] != user_id:
            raise NotFoundError(f"Import session not found: {import_id}")
        raise ConflictError(f"Import session {import_id} has already been confirmed")
