"""
Context Persistence
===================

Loads and saves ``TicketContext`` objects through an ``AsyncSession``.

Reads consult the categorized table first and fall back to the legacy flat
table, categorizing its annotations on the fly. Writes go to the
categorized table as an upsert keyed by ticket, or to the legacy table when it
is the only one available.

All methods operate on the caller's session, so a sequence of calls can be
wrapped in ``run_in_transaction`` and committed or rolled back as one unit.
"""

import json
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, desc, inspect, select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from ticketmemory.annotations import Annotation, Category, TicketContext
from ticketmemory.classifier import TextClassifier
from ticketmemory.db.models import LegacyTicketContextRecord, TicketContextRecord

logger = logging.getLogger(__name__)

LEGACY_TABLE = LegacyTicketContextRecord.__tablename__
CATEGORIZED_TABLE = TicketContextRecord.__tablename__


# =============================================================================
# JSON Encoding
# =============================================================================

def decode_points(blob: Optional[str], category: Optional[Category] = None) -> list[Annotation]:
    """
    Decode a stored JSON array of annotations.

    Malformed JSON is logged at debug level and treated as empty. Plain string
    items are accepted as unpinned annotations.
    """
    if not blob:
        return []
    try:
        raw = json.loads(blob)
    except json.JSONDecodeError as e:
        logger.debug("Failed to parse stored annotations: %s", e)
        return []
    if not isinstance(raw, list):
        logger.debug("Ignoring stored annotations: expected a list, got %s", type(raw).__name__)
        return []

    points = []
    for item in raw:
        if isinstance(item, dict):
            points.append(Annotation.from_dict(item, category))
        elif isinstance(item, str):
            points.append(Annotation.from_dict({"text": item}, category))
    return points


def encode_points(points: list[Annotation]) -> str:
    return json.dumps([p.to_dict() for p in points])


def categorize_points(
    ticket: str,
    points: list[Annotation],
    classifier: TextClassifier,
    requirements: str = "",
) -> TicketContext:
    """Split a flat annotation list into a categorized context."""
    context = TicketContext(ticket=ticket, requirements=requirements)
    for point in points:
        point.category = classifier.classify(point.text)
        context.points(point.category).append(point)
    return context


async def _has_table(session: AsyncSession, name: str) -> bool:
    return await session.run_sync(lambda sync_session: inspect(sync_session.connection()).has_table(name))


# =============================================================================
# Store
# =============================================================================

class ContextStore:
    """
    Ticket context persistence bound to one session.

    Usage:
        async def op(session):
            store = ContextStore(session)
            context = await store.load_or_new("feature-auth")
            context.add(point, max_points=20)
            await store.save(context)

        await run_in_transaction(op)
    """

    def __init__(self, session: AsyncSession, classifier: Optional[TextClassifier] = None):
        self.session = session
        self.classifier = classifier or TextClassifier()
        self._tables: dict[str, bool] = {}

    async def has_table(self, name: str) -> bool:
        if name not in self._tables:
            self._tables[name] = await _has_table(self.session, name)
        return self._tables[name]

    def _from_record(self, record: TicketContextRecord) -> TicketContext:
        context = TicketContext(
            ticket=record.ticket,
            requirements=record.requirements or "",
            created_at=record.created_at,
            updated_at=record.last_updated,
        )
        for category in Category:
            context.set_points(category, decode_points(getattr(record, category.field_name), category))
        return context

    def _from_legacy(self, record: LegacyTicketContextRecord) -> TicketContext:
        context = categorize_points(
            record.ticket,
            decode_points(record.context_points),
            self.classifier,
            requirements=record.requirements or "",
        )
        context.created_at = record.created_at
        context.updated_at = record.last_updated
        return context

    async def load(self, ticket: str) -> Optional[TicketContext]:
        """Load a ticket's context, or None when nothing is stored."""
        if await self.has_table(CATEGORIZED_TABLE):
            result = await self.session.execute(
                select(TicketContextRecord).where(TicketContextRecord.ticket == ticket)
            )
            record = result.scalar_one_or_none()
            if record is not None:
                return self._from_record(record)

        if await self.has_table(LEGACY_TABLE):
            result = await self.session.execute(
                select(LegacyTicketContextRecord).where(LegacyTicketContextRecord.ticket == ticket)
            )
            legacy = result.scalar_one_or_none()
            if legacy is not None:
                return self._from_legacy(legacy)

        return None

    async def load_or_new(self, ticket: str) -> TicketContext:
        context = await self.load(ticket)
        return context if context is not None else TicketContext(ticket=ticket)

    async def save(self, context: TicketContext) -> None:
        """
        Insert or update the categorized row for ``context.ticket``.

        When only the legacy table exists the annotations are flattened into
        its single list instead.
        """
        if not await self.has_table(CATEGORIZED_TABLE):
            await self._save_legacy(context)
            return

        values: dict[str, Any] = {
            "ticket": context.ticket,
            "requirements": context.requirements,
        }
        for category in Category:
            values[category.field_name] = encode_points(context.points(category))

        statement = insert(TicketContextRecord).values(**values)
        update_values = {k: v for k, v in values.items() if k != "ticket"}
        update_values["last_updated"] = func.now()
        statement = statement.on_conflict_do_update(
            index_elements=[TicketContextRecord.ticket],
            set_=update_values,
        )
        await self.session.execute(statement)

    async def _save_legacy(self, context: TicketContext) -> None:
        values = {
            "requirements": context.requirements,
            "context_points": encode_points(context.all_points()),
        }
        statement = insert(LegacyTicketContextRecord).values(ticket=context.ticket, **values)
        statement = statement.on_conflict_do_update(
            index_elements=[LegacyTicketContextRecord.ticket],
            set_={**values, "last_updated": func.now()},
        )
        await self.session.execute(statement)

    async def set_requirements(self, ticket: str, requirements: str) -> TicketContext:
        context = await self.load_or_new(ticket)
        context.requirements = requirements
        await self.save(context)
        return context

    async def clear(self, ticket: str) -> int:
        """Delete a ticket's context from both tables; returns rows removed."""
        removed = 0
        if await self.has_table(CATEGORIZED_TABLE):
            result = await self.session.execute(
                delete(TicketContextRecord).where(TicketContextRecord.ticket == ticket)
            )
            removed += result.rowcount or 0
        if await self.has_table(LEGACY_TABLE):
            result = await self.session.execute(
                delete(LegacyTicketContextRecord).where(LegacyTicketContextRecord.ticket == ticket)
            )
            removed += result.rowcount or 0
        return removed

    async def list_contexts(self, since: Optional[datetime] = None) -> list[TicketContext]:
        """
        All stored contexts, most recently updated first.

        Tickets only present in the legacy table are included after
        categorization.
        """
        contexts: list[TicketContext] = []
        seen: set[str] = set()

        if await self.has_table(CATEGORIZED_TABLE):
            query = select(TicketContextRecord).order_by(desc(TicketContextRecord.last_updated))
            if since is not None:
                query = query.where(TicketContextRecord.last_updated >= since)
            result = await self.session.execute(query)
            for record in result.scalars():
                contexts.append(self._from_record(record))
                seen.add(record.ticket)

        if await self.has_table(LEGACY_TABLE):
            query = select(LegacyTicketContextRecord).order_by(desc(LegacyTicketContextRecord.last_updated))
            if since is not None:
                query = query.where(LegacyTicketContextRecord.last_updated >= since)
            result = await self.session.execute(query)
            for legacy in result.scalars():
                if legacy.ticket not in seen:
                    contexts.append(self._from_legacy(legacy))

        return contexts


async def migrate_legacy(session: AsyncSession, classifier: Optional[TextClassifier] = None) -> int:
    """
    Copy legacy flat rows into the categorized table.

    Tickets already present in the categorized table are skipped, so running
    this more than once is harmless. Returns the number of tickets migrated.
    """
    store = ContextStore(session, classifier)
    if not await store.has_table(LEGACY_TABLE) or not await store.has_table(CATEGORIZED_TABLE):
        return 0

    existing = set((await session.execute(select(TicketContextRecord.ticket))).scalars())
    result = await session.execute(select(LegacyTicketContextRecord))

    migrated = 0
    for legacy in result.scalars().all():
        if legacy.ticket in existing:
            continue
        await store.save(store._from_legacy(legacy))
        migrated += 1
    return migrated
