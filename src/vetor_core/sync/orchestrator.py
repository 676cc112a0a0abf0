"""Sync orchestrator -- runs one sync pass per (organization, source).

A pass:
1. Loads the organization and resolves typed credentials. Missing credentials
   skip the pass with a log line and no SyncLog row.
2. Inserts a SyncLog with status "running" and commits it.
3. Builds the source adapter, fetches, and reconciles.
4. Closes the SyncLog as "success" (per-record errors joined into
   error_message) or, if step 3 raised, as "error" with the exception text.

Exactly one SyncLog is opened and closed per pass, and nothing raised inside
step 3 propagates to the caller. The SyncLog lives in its own session so a
rollback inside reconciliation can never undo it.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.vetor_core.config import Settings
from src.vetor_core.core.monitoring import track_sync_pass
from src.vetor_core.models.tenant import Organization
from src.vetor_core.sync.adapter import ConversationAdapter, CRMAdapter, SourceAdapter, build_adapter
from src.vetor_core.sync.credentials import CRM_TYPE_BY_SOURCE, SourceCredentials, credentials_for
from src.vetor_core.sync.models import SyncLog
from src.vetor_core.sync.reconciler import ConversationReconciler, CRMReconciler
from src.vetor_core.sync.schemas import ReconcileResult, SyncPassResult, SyncSource, SyncStatus

logger = structlog.get_logger(__name__)

AdapterFactory = Callable[[SyncSource, SourceCredentials, Settings], SourceAdapter]

INTERRUPTED_MESSAGE = "Sync interrupted before completion"


class SyncOrchestrator:
    """Runs sync passes and owns the SyncLog lifecycle.

    Args:
        session_factory: Produces AsyncSessions; one per pass for reconciliation
            and a separate one for the SyncLog.
        settings: Application settings (timeouts, base URLs).
        adapter_factory: Builds the adapter for a source. Defaults to
            build_adapter; tests inject fakes here.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        adapter_factory: AdapterFactory | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._adapter_factory = adapter_factory or build_adapter

    async def _open_log(self, organization_id: uuid.UUID, source: SyncSource) -> uuid.UUID:
        async with self._session_factory() as session:
            log = SyncLog(
                organization_id=organization_id,
                source=source.value,
                status=SyncStatus.RUNNING.value,
                records_processed=0,
                started_at=datetime.now(timezone.utc),
            )
            session.add(log)
            await session.commit()
            return log.id

    async def _close_log(
        self,
        sync_log_id: uuid.UUID,
        status: SyncStatus,
        records_processed: int,
        error_message: str | None,
    ) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(SyncLog)
                .where(SyncLog.id == sync_log_id)
                .values(
                    status=status.value,
                    records_processed=records_processed,
                    error_message=error_message,
                    completed_at=datetime.now(timezone.utc),
                )
            )
            await session.commit()

    async def _fetch_and_reconcile(
        self,
        adapter: SourceAdapter,
        organization_id: uuid.UUID,
        minutes: int | None,
    ) -> ReconcileResult:
        async with self._session_factory() as session:
            if isinstance(adapter, CRMAdapter):
                users = await adapter.fetch_users(minutes)
                clients = await adapter.fetch_clients(minutes)
                properties = await adapter.fetch_properties(minutes)
                deals = await adapter.fetch_deals(minutes)
                notes = await adapter.fetch_notes(minutes)
                logger.info(
                    "sync.crm_fetched",
                    organization_id=str(organization_id),
                    users=len(users),
                    clients=len(clients),
                    properties=len(properties),
                    deals=len(deals),
                    notes=len(notes),
                )
                return await CRMReconciler(session, organization_id).run(
                    users, clients, deals, notes, properties=properties
                )

            if isinstance(adapter, ConversationAdapter):
                conversations = await adapter.fetch_conversations(minutes)
                sentiment_updates = await adapter.fetch_sentiment_updates(minutes)
                logger.info(
                    "sync.conversations_fetched",
                    organization_id=str(organization_id),
                    conversations=len(conversations),
                    sentiment_updates=len(sentiment_updates),
                )
                return await ConversationReconciler(session, organization_id).run(
                    conversations, sentiment_updates
                )

        raise TypeError(f"Unsupported adapter type: {type(adapter).__name__}")

    async def run_pass(
        self,
        organization_id: uuid.UUID,
        source: SyncSource,
        minutes: int | None,
    ) -> SyncPassResult | None:
        """Run one pass. Returns None when the pass was skipped for missing credentials."""
        async with self._session_factory() as session:
            org = await session.get(Organization, organization_id)
            if org is None:
                logger.warning(
                    "sync.organization_not_found",
                    organization_id=str(organization_id),
                    source=source.value,
                )
                return None
            credentials = credentials_for(org, source)

        if credentials is None:
            logger.info(
                "sync.skipped_missing_credentials",
                organization_id=str(organization_id),
                source=source.value,
            )
            return None

        sync_log_id = await self._open_log(organization_id, source)
        logger.info(
            "sync.pass_started",
            organization_id=str(organization_id),
            source=source.value,
            sync_log_id=str(sync_log_id),
            minutes=minutes,
        )

        async with track_sync_pass(source.value) as tracker:
            try:
                adapter = self._adapter_factory(source, credentials, self._settings)
                result = await self._fetch_and_reconcile(adapter, organization_id, minutes)
            except Exception as exc:
                error_message = str(exc) or exc.__class__.__name__
                tracker["status"] = SyncStatus.ERROR.value
                await self._close_log(sync_log_id, SyncStatus.ERROR, 0, error_message)
                logger.error(
                    "sync.pass_failed",
                    organization_id=str(organization_id),
                    source=source.value,
                    sync_log_id=str(sync_log_id),
                    error=error_message,
                )
                return SyncPassResult(
                    sync_log_id=sync_log_id,
                    organization_id=organization_id,
                    source=source,
                    status=SyncStatus.ERROR,
                    records_processed=0,
                    error_message=error_message,
                )

            error_message = "\n".join(result.errors) if result.errors else None
            tracker["processed"] = result.processed
            await self._close_log(sync_log_id, SyncStatus.SUCCESS, result.processed, error_message)

        logger.info(
            "sync.pass_completed",
            organization_id=str(organization_id),
            source=source.value,
            sync_log_id=str(sync_log_id),
            processed=result.processed,
            errors=len(result.errors),
        )
        return SyncPassResult(
            sync_log_id=sync_log_id,
            organization_id=organization_id,
            source=source,
            status=SyncStatus.SUCCESS,
            records_processed=result.processed,
            error_message=error_message,
        )

    async def run_source(self, source: SyncSource, minutes: int | None) -> list[SyncPassResult]:
        """Run a pass for every organization whose crm_type selects this source."""
        async with self._session_factory() as session:
            organization_ids = (
                await session.scalars(
                    select(Organization.id)
                    .where(Organization.crm_type == CRM_TYPE_BY_SOURCE[source].value)
                    .order_by(Organization.created_at)
                )
            ).all()

        logger.info("sync.source_started", source=source.value, organizations=len(organization_ids))

        results: list[SyncPassResult] = []
        for organization_id in organization_ids:
            try:
                result = await self.run_pass(organization_id, source, minutes)
            except Exception as exc:
                logger.error(
                    "sync.pass_crashed",
                    organization_id=str(organization_id),
                    source=source.value,
                    error=str(exc),
                )
                continue
            if result is not None:
                results.append(result)
        return results

    async def sweep_stale_runs(self, timeout_minutes: int) -> int:
        """Mark SyncLog rows stuck in "running" past the timeout as errors.

        Returns the number of rows swept.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=timeout_minutes)
        async with self._session_factory() as session:
            result = await session.execute(
                update(SyncLog)
                .where(
                    SyncLog.status == SyncStatus.RUNNING.value,
                    SyncLog.started_at < cutoff,
                )
                .values(
                    status=SyncStatus.ERROR.value,
                    error_message=INTERRUPTED_MESSAGE,
                    completed_at=datetime.now(timezone.utc),
                )
            )
            await session.commit()

        swept = result.rowcount or 0
        if swept:
            logger.warning("sync.stale_runs_swept", count=swept, timeout_minutes=timeout_minutes)
        return swept
