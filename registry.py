"""
registry.py — Live code → session table.

All state lives on one SessionRegistry. A single lock covers every
check-and-mutate step on the table and on a session's file reference;
blob store calls happen after the lock is released.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Optional

import config
from errors import CapacityExhaustedError, NotFoundError
from keygen import KeyGenerator
from scheduler import ExpirationScheduler, utc_now
from storage import BlobRef, BlobStore, get_blob_store

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Session:
    """One allocated code. Compared by identity, never by value."""

    code: str
    created_at: datetime
    expires_at: datetime
    requester_tag: str = ""
    file_ref: Optional[BlobRef] = None

    @property
    def is_bound(self) -> bool:
        return self.file_ref is not None


class SessionRegistry:

    def __init__(
        self,
        store: BlobStore,
        key_generator: Optional[Callable[[], str]] = None,
        ttl: timedelta = timedelta(seconds=config.SESSION_TTL_SECONDS),
        scheduler: Optional[ExpirationScheduler] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.key_generator = key_generator or KeyGenerator()
        self.ttl = ttl
        self.clock = clock
        self.scheduler = scheduler or ExpirationScheduler(clock=clock)
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, code: str) -> bool:
        with self._lock:
            return code in self._sessions

    # ─── Allocate ─────────────────────────────────────────────────────────

    def allocate(self, requester_tag: str = "") -> str:
        """Mint a fresh code and arm its expiry.

        At most ``live sessions + 1`` draws are made before giving up with
        CapacityExhaustedError.
        """
        with self._lock:
            budget = len(self._sessions) + 1
            for _ in range(budget):
                code = self.key_generator()
                if code not in self._sessions:
                    break
            else:
                logger.warning(f"Key space exhausted: {len(self._sessions)} live, {budget} draws")
                raise CapacityExhaustedError(live=len(self._sessions), attempts=budget)

            now = self.clock()
            session = Session(
                code=code,
                created_at=now,
                expires_at=now + self.ttl,
                requester_tag=requester_tag,
            )
            self._sessions[code] = session

        self.scheduler.schedule(session, self.evict)
        logger.info(f"Allocated key {code} (expires {session.expires_at.isoformat()})")
        return code

    # ─── Bind ─────────────────────────────────────────────────────────────

    def bind(self, code: str, blob_ref: BlobRef) -> None:
        """Attach ``blob_ref`` to ``code``, releasing whatever was bound before."""
        with self._lock:
            session = self._sessions.get(code)
            if session is None:
                raise NotFoundError("Invalid key")
            previous = session.file_ref
            session.file_ref = blob_ref

        logger.info(f"Key {code} bound to {blob_ref.name!r} ({blob_ref.size} bytes)")
        if previous is not None:
            logger.info(f"Key {code} replaced {previous.name!r}")
            self._release(previous, reason=f"superseded on {code}")

    # ─── Resolve ──────────────────────────────────────────────────────────

    def resolve(self, code: str) -> Session:
        """Snapshot of the session under ``code``, taken under the lock."""
        with self._lock:
            session = self._sessions.get(code)
            if session is None or not session.is_bound:
                raise NotFoundError()
            return replace(session)

    # ─── Evict ────────────────────────────────────────────────────────────

    def evict(self, session: Session) -> bool:
        """Drop ``session`` if it is still the one stored under its code."""
        with self._lock:
            if self._sessions.get(session.code) is not session:
                return False
            del self._sessions[session.code]
            blob_ref = session.file_ref

        logger.info(f"Key {session.code} expired")
        if blob_ref is not None:
            self._release(blob_ref, reason=f"expiry of {session.code}")
        return True

    def close(self) -> int:
        """Evict every live session. Returns how many were removed."""
        with self._lock:
            sessions = list(self._sessions.values())
        return sum(1 for session in sessions if self.evict(session))

    def _release(self, blob_ref: BlobRef, reason: str) -> None:
        try:
            self.store.delete(blob_ref.id)
        except Exception:
            logger.exception(f"Error removing file {blob_ref.id} ({reason})")


_registry: Optional[SessionRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> SessionRegistry:
    """FastAPI dependency returning the process-wide registry."""
    global _registry
    with _registry_lock:
        if _registry is None:
            _registry = SessionRegistry(get_blob_store())
        return _registry
