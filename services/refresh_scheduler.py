"""
============================================================================
Refresh Scheduler - Periodic Full and Light Cache Refresh
============================================================================

Reliability Level: L6 Critical
Side Effects: Triggers upstream fetches and push broadcasts

TRIGGERS:
    - Full refresh (default every 120s):
        refresh_cache() then distributor.broadcast_refresh()
    - Light refresh (default every 30s):
        aggregate(force_refresh=True) only; keeps the aggregate key warm
        without the pattern purge or a push

    Each trigger fires its run as an independent task and goes straight
    back to sleeping. There is no mutual exclusion: a run that fires while
    the previous one is still in flight simply runs concurrently.

    A failed run is logged and never cancels future ticks.

ERROR CODES:
    - SCHED-001: Full refresh failed
    - SCHED-002: Light refresh failed
============================================================================
"""

from typing import Optional, Set, Callable, Awaitable
import asyncio
import logging

from services.aggregation_service import AggregationService
from services.realtime_distributor import RealtimeDistributor

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_FULL_INTERVAL_SECONDS = 120.0
DEFAULT_LIGHT_INTERVAL_SECONDS = 30.0


class SchedulerErrorCode:
    """Scheduler error codes for audit logging."""
    FULL_REFRESH_FAILED = "SCHED-001"
    LIGHT_REFRESH_FAILED = "SCHED-002"


# =============================================================================
# Refresh Scheduler
# =============================================================================

class RefreshScheduler:
    """
    Drives the periodic refresh of the aggregation cache.

    Reliability Level: L6 Critical
    Input Constraints: intervals must be positive
    """

    def __init__(
        self,
        aggregation: AggregationService,
        distributor: Optional[RealtimeDistributor] = None,
        full_interval_seconds: float = DEFAULT_FULL_INTERVAL_SECONDS,
        light_interval_seconds: float = DEFAULT_LIGHT_INTERVAL_SECONDS,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            aggregation: Service whose cache is refreshed
            distributor: Notified after every full refresh (optional)
            full_interval_seconds: Full refresh period
            light_interval_seconds: Light refresh period
        """
        if full_interval_seconds <= 0:
            raise ValueError(
                f"full_interval_seconds must be positive, got: {full_interval_seconds}"
            )
        if light_interval_seconds <= 0:
            raise ValueError(
                f"light_interval_seconds must be positive, got: {light_interval_seconds}"
            )

        self._aggregation = aggregation
        self._distributor = distributor
        self._full_interval_seconds = full_interval_seconds
        self._light_interval_seconds = light_interval_seconds

        self._running = False
        self._loops: Set[asyncio.Task] = set()
        self._runs: Set[asyncio.Task] = set()

        logger.info(
            f"[SCHEDULER] Initialized | "
            f"full_interval={full_interval_seconds}s | "
            f"light_interval={light_interval_seconds}s"
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        """Number of refresh runs currently executing."""
        return len(self._runs)

    # =========================================================================
    # Refresh Runs
    # =========================================================================

    async def run_full_refresh(self) -> None:
        """Purge and re-aggregate, then push a full snapshot. Never raises."""
        try:
            logger.info("[SCHEDULER] Running scheduled cache refresh")
            await self._aggregation.refresh_cache()

            if self._distributor is not None:
                await self._distributor.broadcast_refresh()

            logger.info("[SCHEDULER] Scheduled cache refresh completed")
        except Exception as e:
            logger.error(
                f"{SchedulerErrorCode.FULL_REFRESH_FAILED} Scheduled cache refresh failed | "
                f"error={e}"
            )

    async def run_light_refresh(self) -> None:
        """Re-aggregate without purging. Never raises."""
        try:
            logger.debug("[SCHEDULER] Running light refresh")
            await self._aggregation.aggregate(force_refresh=True)
        except Exception as e:
            logger.error(
                f"{SchedulerErrorCode.LIGHT_REFRESH_FAILED} Light refresh failed | "
                f"error={e}"
            )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start both trigger loops."""
        if self._running:
            logger.warning("[SCHEDULER] Already running, ignoring start request")
            return

        self._running = True
        self._loops = {
            asyncio.create_task(
                self._trigger_loop(self._full_interval_seconds, self.run_full_refresh)
            ),
            asyncio.create_task(
                self._trigger_loop(self._light_interval_seconds, self.run_light_refresh)
            ),
        }

        logger.info(
            f"[SCHEDULER] Started | "
            f"full_refresh=every {self._full_interval_seconds}s | "
            f"light_refresh=every {self._light_interval_seconds}s"
        )

    async def stop(self) -> None:
        """Stop both loops and cancel in-flight runs."""
        if not self._running:
            return

        self._running = False

        tasks = list(self._loops) + list(self._runs)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._loops.clear()
        self._runs.clear()
        logger.info("[SCHEDULER] Stopped")

    async def _trigger_loop(
        self,
        interval_seconds: float,
        run: Callable[[], Awaitable[None]]
    ) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval_seconds)
            except asyncio.CancelledError:
                break

            task = asyncio.create_task(run())
            self._runs.add(task)
            task.add_done_callback(self._runs.discard)
