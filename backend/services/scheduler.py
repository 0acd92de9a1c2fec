"""
Sweep Scheduler
Runs the alert engine's batch sweep on a fixed interval.

Usage:
    from services import get_scheduler

    scheduler = get_scheduler()
    scheduler.start()
    # Every pet with an active rule is checked each interval
    scheduler.stop()
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from alerts import AlertEngine, SweepSummary, get_alert_engine

logger = logging.getLogger(__name__)


@dataclass
class SchedulerStats:
    """Scheduler statistics"""
    is_running: bool = False
    interval_minutes: float = 0.0
    sweeps_completed: int = 0
    sweeps_failed: int = 0
    started_at: Optional[datetime] = None
    last_sweep_at: Optional[datetime] = None
    last_summary: Optional[SweepSummary] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "interval_minutes": self.interval_minutes,
            "sweeps_completed": self.sweeps_completed,
            "sweeps_failed": self.sweeps_failed,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
            "last_summary": self.last_summary.to_dict() if self.last_summary else None,
        }


class SweepScheduler:
    """
    Periodic batch sweep on a background thread.

    The thread owns its own event loop. stop() sets the loop's stop event,
    which both ends the wait between sweeps and tells a running sweep not
    to start further subjects.
    """

    def __init__(self, engine: Optional[AlertEngine] = None, interval_minutes: float = 60.0):
        self._engine = engine
        self._interval = interval_minutes * 60
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop: Optional[asyncio.Event] = None
        self._stats = SchedulerStats(interval_minutes=interval_minutes)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    def start(self) -> Dict[str, Any]:
        """Start sweeping in the background"""
        if self._running:
            return {"status": "already_running"}
        if self._interval <= 0:
            return {"status": "disabled"}

        if self._engine is None:
            self._engine = get_alert_engine()

        self._stats = SchedulerStats(
            is_running=True,
            interval_minutes=self._interval / 60,
            started_at=datetime.now()
        )

        self._running = True
        self._thread = threading.Thread(target=self._run_async_loop, daemon=True)
        self._thread.start()
        logger.info("Sweep scheduler started (every %.1f minutes)", self._interval / 60)

        return {"status": "started", "interval_minutes": self._interval / 60}

    def stop(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Stop sweeping; a sweep in progress finishes its running subjects"""
        if not self._running:
            return {"status": "not_running"}

        self._running = False
        self._stats.is_running = False

        if self._loop and self._stop:
            self._loop.call_soon_threadsafe(self._stop.set)
        if self._thread:
            self._thread.join(timeout)

        logger.info("Sweep scheduler stopped after %d sweeps", self._stats.sweeps_completed)
        return {"status": "stopped", "sweeps_completed": self._stats.sweeps_completed}

    def _run_async_loop(self):
        """Run async event loop in background thread"""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        try:
            self._loop.run_until_complete(self._run())
        except Exception:
            logger.exception("Sweep scheduler crashed")
        finally:
            self._loop.close()
            self._loop = None
            self._running = False
            self._stats.is_running = False

    async def _run(self):
        self._stop = asyncio.Event()
        # stop() may have been called before the event existed
        if not self._running:
            return

        while not self._stop.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> Optional[SweepSummary]:
        """Run a single sweep and record its outcome"""
        try:
            summary = await self._engine.run_batch_sweep(stop=self._stop)
        except Exception:
            self._stats.sweeps_failed += 1
            logger.exception("Batch sweep failed")
            return None

        self._stats.sweeps_completed += 1
        self._stats.last_sweep_at = summary.finished_at or datetime.now()
        self._stats.last_summary = summary
        return summary


# Singleton
_scheduler: Optional[SweepScheduler] = None


def get_scheduler() -> SweepScheduler:
    """Get or create scheduler singleton"""
    global _scheduler
    if _scheduler is None:
        from core.config import get_settings
        _scheduler = SweepScheduler(interval_minutes=get_settings().sweep_interval_minutes)
    return _scheduler
