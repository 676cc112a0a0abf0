"""Reconciler -- applies external records to local brokers, deals, and activity logs.

All writes are scoped to one organization. Matching keys, in priority order:
- Broker: (organization_id, crm_external_id)
- Deal: (organization_id, external_id); else a property-title match among the
  organization's deals that have no external id yet. More than one title
  candidate is a DealMatchConflict and nothing is merged.
- ActivityLog: (type, external_id) among the organization's deals

Each record is applied and committed on its own. A failure rolls back only
that record, is logged, and is appended to the result's errors; the batch
continues. Running the same batch twice leaves the database unchanged after
the first run.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.vetor_core.deals.models import ActivityLog, Broker, Deal
from src.vetor_core.deals.schemas import ActivityType, DealStatus, Sentiment, split_full_name
from src.vetor_core.sync.errors import DealMatchConflict, ReconciliationError
from src.vetor_core.sync.schemas import (
    MadaConversation,
    ReconcileResult,
    SentimentUpdate,
    VetorClient,
    VetorDeal,
    VetorNote,
    VetorProperty,
    VetorUser,
)

logger = structlog.get_logger(__name__)

# Checked in order; the first group with a keyword contained in the stage wins
STAGE_KEYWORDS: tuple[tuple[DealStatus, tuple[str, ...]], ...] = (
    (DealStatus.LOST, ("perdido", "lost")),
    (DealStatus.CLOSED, ("fechado", "ganho", "closed", "won")),
    (DealStatus.PROPOSAL, ("proposta", "negociacao", "negociação", "proposal", "negotiation")),
    (DealStatus.NEGOTIATION, ("visita", "visit")),
    (DealStatus.QUALIFIED, ("qualificacao", "qualificação", "qualified", "qualification")),
)

UNTITLED_CLIENT = "Sem nome"


def map_stage(stage: str | None) -> DealStatus:
    """Map a free-text CRM stage to a DealStatus. Total: unknown stages map to New."""
    if not stage:
        return DealStatus.NEW
    lowered = stage.lower()
    for status, keywords in STAGE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return status
    return DealStatus.NEW


def derive_broker_active(disabled: bool | None, status: str | None) -> bool:
    """A broker is active only when not disabled and its CRM status is "active"."""
    return not disabled and status == "active"


def _to_decimal(value: float | None) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value))


def _record_id(raw: Any) -> str:
    if isinstance(raw, dict) and raw.get("id") is not None:
        return str(raw["id"])
    return "?"


class _BaseReconciler:
    """Per-record transaction handling shared by both reconcilers."""

    def __init__(self, session: AsyncSession, organization_id: uuid.UUID) -> None:
        self._session = session
        # Plain UUID so a rollback never leaves us holding an expired ORM attribute
        self._organization_id = organization_id

    async def _apply(
        self,
        kind: str,
        record_id: str,
        operation: Callable[[], Awaitable[bool]],
        result: ReconcileResult,
    ) -> None:
        """Run one record's write and commit it; on failure roll back that record only.

        operation returns True when it wrote something and False when the
        record was intentionally skipped.
        """
        try:
            written = await operation()
            await self._session.commit()
        except Exception as exc:
            await self._session.rollback()
            error_msg = f"Failed to sync {kind} {record_id}: {exc}"
            result.errors.append(error_msg)
            logger.error(
                "sync.record_error",
                organization_id=str(self._organization_id),
                kind=kind,
                record_id=record_id,
                error=str(exc),
            )
            return

        if written:
            result.processed += 1
        else:
            result.skipped += 1

    async def _find_deal(self, reference: str) -> Deal | None:
        """Resolve a deal reference (local id, else external id) in this organization."""
        try:
            local_id = uuid.UUID(reference)
        except ValueError:
            local_id = None

        if local_id is not None:
            deal = await self._session.scalar(
                select(Deal).where(Deal.id == local_id, Deal.organization_id == self._organization_id)
            )
            if deal is not None:
                return deal

        return await self._session.scalar(
            select(Deal)
            .where(Deal.external_id == reference, Deal.organization_id == self._organization_id)
            .limit(1)
        )

    async def _upsert_activity(
        self,
        deal_id: uuid.UUID,
        activity_type: ActivityType,
        external_id: str,
        description: str,
        metadata: dict[str, Any],
    ) -> ActivityLog:
        # One row per (type, external id) in the organization, whichever deal
        # the record currently points at.
        log = await self._session.scalar(
            select(ActivityLog)
            .join(Deal, Deal.id == ActivityLog.deal_id)
            .where(
                Deal.organization_id == self._organization_id,
                ActivityLog.type == activity_type.value,
                ActivityLog.external_id == external_id,
            )
            .limit(1)
        )
        if log is None:
            log = ActivityLog(
                deal_id=deal_id,
                type=activity_type.value,
                external_id=external_id,
                description=description,
                metadata_json=metadata,
            )
            self._session.add(log)
        else:
            log.deal_id = deal_id
            log.description = description
            log.metadata_json = metadata
        return log


# ── CRM Records ─────────────────────────────────────────────────────────────


class CRMReconciler(_BaseReconciler):
    """Applies CRM users, deals, and notes for one organization.

    Usage:
        result = await CRMReconciler(session, org_id).run(users, clients, deals, notes)
    """

    async def upsert_broker(self, raw_user: dict[str, Any]) -> bool:
        user = VetorUser.model_validate(raw_user)

        broker = await self._session.scalar(
            select(Broker).where(
                Broker.organization_id == self._organization_id,
                Broker.crm_external_id == user.id,
            )
        )
        if broker is None:
            broker = Broker(
                organization_id=self._organization_id,
                crm_external_id=user.id,
                first_name="",
                last_name="",
                is_active=derive_broker_active(user.disabled, user.status),
            )
            self._session.add(broker)
        elif user.disabled is not None or user.status is not None:
            broker.is_active = derive_broker_active(user.disabled, user.status)

        if user.first_name is not None:
            broker.first_name = user.first_name.strip()
        if user.last_name is not None:
            broker.last_name = user.last_name.strip()
        if not broker.first_name and not broker.last_name and user.full_name:
            broker.first_name, broker.last_name = split_full_name(user.full_name)
        if user.email is not None:
            broker.email = user.email.strip() or None
        if user.phone is not None:
            broker.phone = user.phone.strip() or None

        broker.name = f"{broker.first_name} {broker.last_name}".strip() or (user.full_name or "").strip() or None
        return True

    async def upsert_deal(
        self,
        raw_deal: dict[str, Any],
        clients_by_id: dict[str, VetorClient],
        properties_by_id: dict[str, VetorProperty] | None = None,
    ) -> bool:
        record = VetorDeal.model_validate(raw_deal)
        org = Deal.organization_id == self._organization_id

        deal = await self._session.scalar(
            select(Deal).where(org, Deal.external_id == record.id).limit(1)
        )

        title = record.title
        if not title and properties_by_id and record.first_property_id in properties_by_id:
            title = properties_by_id[record.first_property_id].title

        if deal is None and title:
            candidates = (
                await self._session.scalars(
                    select(Deal).where(org, Deal.external_id.is_(None), Deal.property_title == title)
                )
            ).all()
            if len(candidates) > 1:
                raise DealMatchConflict(record.id, title, len(candidates))
            if candidates:
                deal = candidates[0]
                deal.external_id = record.id
                logger.info(
                    "sync.deal_adopted_by_title",
                    organization_id=str(self._organization_id),
                    deal_id=str(deal.id),
                    external_id=record.id,
                )

        client = clients_by_id.get(record.client_id) if record.client_id else None

        if deal is None:
            client_name = client.display_name if client else ""
            deal = Deal(
                organization_id=self._organization_id,
                external_id=record.id,
                client_name=client_name or title or UNTITLED_CLIENT,
                status=map_stage(record.stage).value,
                sentiment=Sentiment.NEUTRAL.value,
            )
            self._session.add(deal)
        elif record.stage is not None:
            deal.status = map_stage(record.stage).value

        if client is not None:
            if client.display_name:
                deal.client_name = client.display_name
            if client.email is not None:
                deal.client_email = client.email or None
            if client.phone_primary is not None:
                deal.client_phone = client.phone_primary or None

        if record.agent_email:
            broker_id = await self._session.scalar(
                select(Broker.id)
                .where(
                    Broker.organization_id == self._organization_id,
                    func.lower(Broker.email) == record.agent_email.strip().lower(),
                )
                .limit(1)
            )
            if broker_id is not None:
                deal.broker_id = broker_id

        if title is not None:
            deal.property_title = title
        if record.first_property_id is not None:
            deal.property_id = record.first_property_id
        if record.stage is not None:
            deal.stage = record.stage
        if record.stage_entered_at is not None:
            deal.stage_entered_at = record.stage_entered_at
        if record.potential_value is not None:
            deal.potential_value = _to_decimal(record.potential_value)
        if record.potential_commission is not None:
            deal.potential_commission = _to_decimal(record.potential_commission)
        if record.exclusividade is not None:
            deal.exclusivity = record.exclusivity()
        if record.origem is not None:
            deal.origin = record.origem
        if record.last_activity_at is not None:
            deal.last_activity = record.last_activity_at
        return True

    async def upsert_note(self, raw_note: dict[str, Any]) -> bool:
        note = VetorNote.model_validate(raw_note)
        if note.is_archived:
            return False
        if not note.deal_id:
            raise ReconciliationError(f"Note {note.id} has no associated deal_id")

        deal = await self._find_deal(note.deal_id)
        if deal is None:
            raise ReconciliationError(f"Deal {note.deal_id} not found for note {note.id}")

        await self._upsert_activity(
            deal_id=deal.id,
            activity_type=ActivityType.NOTE,
            external_id=note.id,
            description=note.content or note.title or "",
            metadata={
                "crm_note_id": note.id,
                "title": note.title,
                "note_type": note.note_type,
                "priority": note.priority,
                "due_date": note.due_date,
                "is_completed": note.is_completed,
                "agent_email": note.agent_email,
            },
        )
        return True

    def _index_clients(self, clients: list[dict[str, Any]], result: ReconcileResult) -> dict[str, VetorClient]:
        indexed: dict[str, VetorClient] = {}
        for raw in clients:
            try:
                client = VetorClient.model_validate(raw)
            except ValueError as exc:
                result.errors.append(f"Failed to read client {_record_id(raw)}: {exc}")
                logger.warning("sync.client_invalid", record_id=_record_id(raw), error=str(exc))
                continue
            indexed[client.id] = client
        return indexed

    @staticmethod
    def _index_properties(properties: list[dict[str, Any]]) -> dict[str, VetorProperty]:
        indexed: dict[str, VetorProperty] = {}
        for raw in properties:
            try:
                prop = VetorProperty.model_validate(raw)
            except ValueError:
                continue
            indexed[prop.id] = prop
        return indexed

    async def run(
        self,
        users: list[dict[str, Any]],
        clients: list[dict[str, Any]],
        deals: list[dict[str, Any]],
        notes: list[dict[str, Any]],
        properties: list[dict[str, Any]] | None = None,
    ) -> ReconcileResult:
        """Apply a full batch: users, then deals, then notes."""
        result = ReconcileResult()
        clients_by_id = self._index_clients(clients, result)
        properties_by_id = self._index_properties(properties or [])

        for raw in users:
            await self._apply("user", _record_id(raw), lambda raw=raw: self.upsert_broker(raw), result)
        for raw in deals:
            await self._apply(
                "deal",
                _record_id(raw),
                lambda raw=raw: self.upsert_deal(raw, clients_by_id, properties_by_id),
                result,
            )
        for raw in notes:
            await self._apply("note", _record_id(raw), lambda raw=raw: self.upsert_note(raw), result)

        logger.info(
            "sync.crm_reconciled",
            organization_id=str(self._organization_id),
            processed=result.processed,
            skipped=result.skipped,
            errors=len(result.errors),
        )
        return result


# ── Conversation Records ────────────────────────────────────────────────────


class ConversationReconciler(_BaseReconciler):
    """Applies analyzed conversations and sentiment updates to deals."""

    async def apply_conversation(self, raw: dict[str, Any]) -> bool:
        conversation = MadaConversation.model_validate(raw)
        reference = conversation.linked_deal_id
        if not reference:
            raise ReconciliationError(f"Conversation {conversation.id} has no associated deal_id")

        deal = await self._find_deal(reference)
        if deal is None:
            raise ReconciliationError(f"Deal {reference} not found for conversation {conversation.id}")

        sentiment = Sentiment.parse(conversation.sentiment)
        if conversation.summary:
            deal.smart_summary = conversation.summary
        if sentiment is not None:
            deal.sentiment = sentiment.value
        if conversation.updated_at is not None:
            deal.last_activity = conversation.updated_at

        await self._upsert_activity(
            deal_id=deal.id,
            activity_type=ActivityType.CONVERSATION_SUMMARY,
            external_id=conversation.id,
            description=conversation.summary or "AI conversation summary",
            metadata={
                "sentiment": sentiment.value if sentiment else conversation.sentiment,
                "conversation_id": conversation.id,
                "transcription_length": len(conversation.transcription or ""),
            },
        )
        return True

    async def apply_sentiment_update(self, raw: dict[str, Any]) -> bool:
        update = SentimentUpdate.model_validate(raw)
        sentiment = Sentiment.parse(update.sentiment)
        if sentiment is None:
            raise ReconciliationError(f"Unknown sentiment {update.sentiment!r} for deal {update.deal_id}")

        deal = await self._find_deal(update.deal_id)
        if deal is None:
            raise ReconciliationError(f"Deal {update.deal_id} not found for sentiment update")

        deal.sentiment = sentiment.value
        return True

    async def run(
        self,
        conversations: list[dict[str, Any]],
        sentiment_updates: list[dict[str, Any]] | None = None,
    ) -> ReconcileResult:
        result = ReconcileResult()
        for raw in conversations:
            await self._apply("conversation", _record_id(raw), lambda raw=raw: self.apply_conversation(raw), result)
        for raw in sentiment_updates or []:
            record_id = str(raw.get("deal_id", "?")) if isinstance(raw, dict) else "?"
            await self._apply(
                "sentiment_update", record_id, lambda raw=raw: self.apply_sentiment_update(raw), result
            )

        logger.info(
            "sync.conversations_reconciled",
            organization_id=str(self._organization_id),
            processed=result.processed,
            errors=len(result.errors),
        )
        return result
