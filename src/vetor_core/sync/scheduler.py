"""Background scheduler for periodic source syncs.

Provides a lightweight APScheduler wrapper with one interval job per source:
- Conversation store every CONVERSATION_SYNC_INTERVAL_MINUTES
- Vetor Imobi CRM every CRM_SYNC_INTERVAL_MINUTES

Each tick looks back exactly one interval. A tick never overlaps a previous
tick of the same source: APScheduler runs the job with max_instances=1 and
coalesce=True, and run_tick() also skips while a tick is in flight, which
covers ticks started by hand.

Exports:
    SyncScheduler: Owns the jobs; started and stopped in the app lifespan.
"""

from __future__ import annotations

import uuid

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.vetor_core.config import Settings
from src.vetor_core.sync.orchestrator import SyncOrchestrator
from src.vetor_core.sync.schemas import ManualSyncResult, SyncPassResult, SyncSource

logger = structlog.get_logger(__name__)


class SyncScheduler:
    """Periodic sync jobs plus the on-demand trigger used by POST /api/sync.

    Args:
        orchestrator: Runs the passes.
        settings: Supplies the per-source intervals and the manual lookback.
    """

    def __init__(self, orchestrator: SyncOrchestrator, settings: Settings) -> None:
        self._orchestrator = orchestrator
        self._settings = settings
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False
        self._in_flight: set[SyncSource] = set()

    def interval_minutes(self, source: SyncSource) -> int:
        if source == SyncSource.MADA:
            return self._settings.CONVERSATION_SYNC_INTERVAL_MINUTES
        return self._settings.CRM_SYNC_INTERVAL_MINUTES

    @property
    def running(self) -> bool:
        return self._started

    def start(self) -> bool:
        """Start the interval jobs. Returns False if already started."""
        if self._started:
            return False

        self._scheduler = AsyncIOScheduler()
        for source in SyncSource:
            minutes = self.interval_minutes(source)
            self._scheduler.add_job(
                self.run_tick,
                trigger=IntervalTrigger(minutes=minutes),
                args=[source],
                id=f"sync_{source.value}",
                name=f"Sync {source.value} every {minutes} minutes",
                max_instances=1,
                coalesce=True,
            )

        self._scheduler.start()
        self._started = True
        logger.info(
            "sync_scheduler.started",
            jobs=[f"sync_{source.value}" for source in SyncSource],
            conversation_interval_minutes=self.interval_minutes(SyncSource.MADA),
            crm_interval_minutes=self.interval_minutes(SyncSource.VETOR_IMOBI),
        )
        return True

    async def run_tick(self, source: SyncSource) -> list[SyncPassResult] | None:
        """Run one scheduled tick for source. Returns None when skipped for overlap."""
        if source in self._in_flight:
            logger.warning("sync_scheduler.tick_skipped", source=source.value, reason="previous tick still running")
            return None

        self._in_flight.add(source)
        try:
            results = await self._orchestrator.run_source(source, self.interval_minutes(source))
        except Exception as exc:
            # Organization listing failed; passes already contain their own errors
            logger.error("sync_scheduler.tick_failed", source=source.value, error=str(exc))
            return []
        finally:
            self._in_flight.discard(source)

        logger.info(
            "sync_scheduler.tick_complete",
            source=source.value,
            passes=len(results),
            failed=sum(1 for r in results if r.status == "error"),
        )
        return results

    async def trigger(
        self,
        organization_id: uuid.UUID,
        sources: list[SyncSource],
        minutes: int | None = None,
    ) -> ManualSyncResult:
        """Run the requested sources for one organization, one after another."""
        lookback = minutes if minutes is not None else self._settings.MANUAL_SYNC_DEFAULT_MINUTES
        aggregated = ManualSyncResult()
        for source in sources:
            result = await self._orchestrator.run_pass(organization_id, source, lookback)
            if result is not None:
                aggregated.passes.append(result)

        logger.info(
            "sync.manual_trigger_complete",
            organization_id=str(organization_id),
            sources=[s.value for s in sources],
            minutes=lookback,
            records_processed=aggregated.records_processed,
        )
        return aggregated

    def stop(self) -> None:
        """Shut down the scheduler."""
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("sync_scheduler.stopped")


__all__ = ["SyncScheduler"]
