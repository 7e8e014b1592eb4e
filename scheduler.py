"""
scheduler.py — One-shot expiry timers for sessions.

Every scheduled entry carries the exact session object it was armed for.
The callback decides what "expire" means; the registry uses its identity
checked ``evict`` so a late or duplicate firing is harmless.
"""

import heapq
import itertools
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# Upper bound on one sleep, so wall-clock jumps are noticed.
_MAX_WAIT_SECONDS = 30.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(order=True)
class ScheduledExpiration:
    due: datetime
    seq: int
    session: Any = field(compare=False)
    callback: Callable[[Any], Any] = field(compare=False)


class ExpirationScheduler:
    """Heap of pending expirations, drained by ``run_pending``.

    ``start()`` drains it on a daemon thread; tests drive ``run_pending()``
    directly with a fake clock.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock
        self._heap: list[ScheduledExpiration] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._stopping = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._heap)

    def schedule(self, session, callback: Callable[[Any], Any]) -> ScheduledExpiration:
        """Arm ``callback(session)`` for ``session.expires_at``."""
        entry = ScheduledExpiration(
            due=session.expires_at,
            seq=next(self._seq),
            session=session,
            callback=callback,
        )
        with self._cond:
            heapq.heappush(self._heap, entry)
            self._cond.notify()
        return entry

    def next_due(self) -> Optional[datetime]:
        with self._cond:
            return self._heap[0].due if self._heap else None

    def _pop_due(self) -> list[ScheduledExpiration]:
        now = self.clock()
        due = []
        with self._cond:
            while self._heap and self._heap[0].due <= now:
                due.append(heapq.heappop(self._heap))
        return due

    def run_pending(self) -> int:
        """Fire every entry whose due time has passed. Returns how many fired."""
        fired = 0
        for entry in self._pop_due():
            fired += 1
            try:
                entry.callback(entry.session)
            except Exception:
                logger.exception(f"Expiration callback failed for {entry.session!r}")
        return fired

    # ─── Background thread ────────────────────────────────────────────────

    def start(self) -> None:
        with self._cond:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stopping = False
            self._thread = threading.Thread(target=self._run, name="expiration-scheduler", daemon=True)
            self._thread.start()
        logger.info("Expiration scheduler started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._cond:
            thread = self._thread
            self._stopping = True
            self._cond.notify_all()
        if thread is not None:
            thread.join(timeout)
        self._thread = None
        logger.info("Expiration scheduler stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _seconds_until_next(self) -> Optional[float]:
        if not self._heap:
            return None
        return (self._heap[0].due - self.clock()).total_seconds()

    def _run(self) -> None:
        while True:
            with self._cond:
                if self._stopping:
                    return
                delay = self._seconds_until_next()
                if delay is None or delay > 0:
                    wait = _MAX_WAIT_SECONDS if delay is None else min(delay, _MAX_WAIT_SECONDS)
                    self._cond.wait(timeout=wait)
                    continue
            self.run_pending()
