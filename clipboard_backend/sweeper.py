from __future__ import annotations

import asyncio
import enum
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .config import CLEANUP_INTERVAL_SECONDS, MIN_CLEANUP_INTERVAL_SECONDS
from .models import now_ms
from .store import ItemStore

logger = logging.getLogger(__name__)


class SweeperState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class SweepResult:
    deleted: int
    started_at: int
    finished_at: int
    skipped: bool = False


class ExpirySweeper:
    """Removes expired items from an ItemStore, on a schedule or on demand.

    Idle -> Running -> Idle. A run requested while another is in progress is
    skipped, not queued; ``ItemStore.delete_expired`` is safe under
    concurrency either way.
    """

    def __init__(self, store: ItemStore, interval_seconds: float = CLEANUP_INTERVAL_SECONDS):
        self.store = store
        self.interval_seconds = max(MIN_CLEANUP_INTERVAL_SECONDS, interval_seconds)
        self.last_result: Optional[SweepResult] = None
        self._running = threading.Lock()

    @property
    def state(self) -> SweeperState:
        return SweeperState.RUNNING if self._running.locked() else SweeperState.IDLE

    def run_once(self, now: Optional[int] = None) -> SweepResult:
        started_at = now_ms()
        if not self._running.acquire(blocking=False):
            logger.info("Sweep already running; skipping")
            return SweepResult(deleted=0, started_at=started_at, finished_at=started_at, skipped=True)
        try:
            deleted = self.store.delete_expired(now_ms() if now is None else now)
        finally:
            self._running.release()
        result = SweepResult(deleted=deleted, started_at=started_at, finished_at=now_ms())
        self.last_result = result
        return result

    def trigger_now(self) -> SweepResult:
        logger.info("Running cleanup job (manual trigger)...")
        return self.run_once()

    async def run_forever(self) -> None:
        # Blocking store work runs in a worker thread so request handling
        # keeps going during a long sweep.
        while True:
            await asyncio.sleep(self.interval_seconds)
            logger.info("Running cleanup job (scheduled)...")
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("Scheduled cleanup failed")
