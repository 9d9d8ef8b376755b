"""
Memory Service
==============

Orchestrates ticket resolution, extraction, classification and persistence.

Every write path runs inside ``run_in_transaction`` so the session record and
the annotations derived from the same message are committed together or not
at all. Nothing is ever written under ``DEFAULT_TICKET``.

Usage:
    service = MemoryService(config)
    result = await service.save_session(
        branch="feature-auth",
        message="Remember: always validate input\\nTODO: add rate limiting",
    )
"""

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from ticketmemory.annotations import (
    SELECTOR_PATTERN,
    Annotation,
    Category,
    RemovalResult,
    TicketContext,
    truncate_with_marker,
)
from ticketmemory.classifier import TextClassifier
from ticketmemory.config import MemoryConfig
from ticketmemory.db import connection
from ticketmemory.db.models import utcnow
from ticketmemory.errors import (
    ContextNotFoundError,
    IndexOutOfRangeError,
    InvalidSelectorError,
    ValidationError,
)
from ticketmemory.extraction import DiffExtractor, ExtractedContent, MessageExtractor
from ticketmemory.git import DiffStats
from ticketmemory.sessions import SessionLedger, SessionStats, WorkSession
from ticketmemory.store import ContextStore
from ticketmemory.tickets import DEFAULT_TICKET, TicketResolver, resolver_for

logger = logging.getLogger(__name__)

# Signatures kept when harvesting after a save
SAVE_HARVEST_MARKERS = ("func ", "type ", "def ", "class ", "endpoint:")


class AddOutcome(Enum):
    ADDED = "added"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


@dataclass
class SaveResult:
    """What one save invocation recorded."""
    ticket: str
    session: Optional[WorkSession] = None
    added: list[Annotation] = field(default_factory=list)


@dataclass
class TicketSummary:
    """Everything the ``load`` command shows for a ticket."""
    ticket: str
    context: Optional[TicketContext]
    stats: SessionStats
    recent_sessions: list[WorkSession]


@dataclass
class CleanupResult:
    deleted: int
    remaining: int


def generate_session_id() -> str:
    return f"session-{int(time.time())}-{os.getpid()}"


class MemoryService:
    """High level operations used by both command line tools."""

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        *,
        classifier: Optional[TextClassifier] = None,
        resolver: Optional[TicketResolver] = None,
    ):
        self.config = config or MemoryConfig()
        self.classifier = classifier or TextClassifier()
        self.resolver = resolver or resolver_for(self.config.ticket_policy)
        self.extractor = MessageExtractor(self.config)
        self.diff_extractor = DiffExtractor(limit=self.config.max_diff_patterns)

    # =========================================================================
    # Helpers
    # =========================================================================

    def resolve_ticket(self, branch: str) -> str:
        return self.resolver.resolve(branch)

    def _store(self, session: AsyncSession) -> ContextStore:
        return ContextStore(session, self.classifier)

    def _require_ticket(self, ticket: str) -> None:
        if not ticket or ticket == DEFAULT_TICKET:
            raise ValidationError("No ticket: annotations are never stored for shared branches")

    def _add(
        self,
        context: TicketContext,
        text: str,
        category: Category,
        *,
        pinned: bool = False,
        gated: bool = True,
    ) -> tuple[AddOutcome, Optional[Annotation]]:
        """Truncate, gate and add one annotation to an in-memory context."""
        text = truncate_with_marker(text.strip(), self.config.max_text_bytes)
        if not text:
            return AddOutcome.REJECTED, None
        if gated and not pinned and not self.classifier.is_important(text, category):
            logger.debug("Rejected %s annotation: %s", category.value, text)
            return AddOutcome.REJECTED, None

        point = Annotation.create(text, category, pinned=pinned)
        if not context.add(point, self.config.capacity_for(category)):
            return AddOutcome.DUPLICATE, None
        return AddOutcome.ADDED, point

    def apply_extraction(self, context: TicketContext, content: ExtractedContent) -> list[Annotation]:
        """
        Merge one message's extraction into a context.

        Directives are pinned and bypass the gate. Todos always pass. The
        error-state note is recorded as State without gating.
        """
        added: list[Annotation] = []

        def keep(outcome: AddOutcome, point: Optional[Annotation]) -> None:
            if outcome is AddOutcome.ADDED and point is not None:
                added.append(point)

        for directive in content.directives:
            keep(*self._add(context, directive, self.classifier.classify(directive), pinned=True))
        for pattern in content.code_patterns:
            keep(*self._add(context, pattern, Category.PATTERN))
        for implementation in content.implementations:
            keep(*self._add(context, implementation, Category.IMPLEMENTATION))
        for todo in content.todos:
            keep(*self._add(context, todo, Category.NEXT))
        if content.error_state:
            keep(*self._add(context, content.error_state, Category.STATE, gated=False))

        return added

    # =========================================================================
    # Read Paths
    # =========================================================================

    async def load_context(self, ticket: str) -> Optional[TicketContext]:
        async with connection.get_session_maker()() as session:
            return await self._store(session).load(ticket)

    async def summary(self, ticket: str) -> TicketSummary:
        async with connection.get_session_maker()() as session:
            ledger = SessionLedger(session)
            return TicketSummary(
                ticket=ticket,
                context=await self._store(session).load(ticket),
                stats=await ledger.stats(ticket),
                recent_sessions=await ledger.recent(ticket, self.config.recent_sessions),
            )

    async def list_contexts(self, recent_only: bool = False) -> list[TicketContext]:
        since = utcnow() - timedelta(days=self.config.recent_days) if recent_only else None
        async with connection.get_session_maker()() as session:
            return await self._store(session).list_contexts(since=since)

    async def session_stats(self) -> dict[str, SessionStats]:
        async with connection.get_session_maker()() as session:
            return await SessionLedger(session).stats_by_ticket()

    # =========================================================================
    # Write Paths
    # =========================================================================

    async def save_session(
        self,
        *,
        branch: str,
        message: str = "",
        session_id: Optional[str] = None,
        stats: Optional[DiffStats] = None,
        commit_sha: str = "",
    ) -> SaveResult:
        """
        Record a session and the annotations extracted from its message.

        Both writes share one transaction. On a shared branch the session is
        still recorded but no annotations are written.
        """
        ticket = self.resolve_ticket(branch)
        session_id = session_id or generate_session_id()
        content = self.extractor.extract(message) if message else ExtractedContent()

        async def operation(session: AsyncSession) -> SaveResult:
            ledger = SessionLedger(session)
            work = await ledger.upsert(
                ticket=ticket,
                session_id=session_id,
                branch=branch,
                task_description=message,
                stats=stats,
                commit_sha=commit_sha,
            )
            result = SaveResult(ticket=ticket, session=work)
            if ticket == DEFAULT_TICKET or content.is_empty():
                return result

            store = self._store(session)
            context = await store.load_or_new(ticket)
            result.added = self.apply_extraction(context, content)
            await store.save(context)
            return result

        return await connection.run_in_transaction(operation)

    async def add_annotation(
        self,
        ticket: str,
        text: str,
        category: Optional[Category] = None,
        *,
        pinned: bool = False,
    ) -> tuple[AddOutcome, Optional[Annotation]]:
        """
        Add one annotation.

        With no category the text must pass the general importance gate and
        is then auto-categorized. Pinned annotations bypass gating.
        """
        self._require_ticket(ticket)
        if category is None:
            if not pinned and not self.classifier.is_important(text):
                return AddOutcome.REJECTED, None
            category = self.classifier.classify(text)
            gated = False
        else:
            gated = not pinned

        async def operation(session: AsyncSession) -> tuple[AddOutcome, Optional[Annotation]]:
            store = self._store(session)
            context = await store.load_or_new(ticket)
            outcome, point = self._add(context, text, category, pinned=pinned, gated=gated)
            if outcome is AddOutcome.ADDED:
                await store.save(context)
            return outcome, point

        return await connection.run_in_transaction(operation)

    async def set_requirements(self, ticket: str, requirements: str) -> None:
        self._require_ticket(ticket)
        text = truncate_with_marker(requirements.strip(), self.config.max_text_bytes)

        async def operation(session: AsyncSession) -> None:
            await self._store(session).set_requirements(ticket, text)

        await connection.run_in_transaction(operation)

    async def remove(self, ticket: str, category: Category, selector: str) -> RemovalResult:
        """Remove annotations by ``all`` or 1-based positions."""
        if not SELECTOR_PATTERN.match(selector.strip()):
            raise InvalidSelectorError(selector)

        async def operation(session: AsyncSession) -> RemovalResult:
            store = self._store(session)
            context = await store.load(ticket)
            if context is None:
                raise ContextNotFoundError(ticket)
            result = context.remove(category, selector)
            if result.removed:
                await store.save(context)
            return result

        return await connection.run_in_transaction(operation)

    async def mark_complete(self, ticket: str, number: int) -> bool:
        """Mark the Nth next step complete; False if it already was."""

        async def operation(session: AsyncSession) -> bool:
            store = self._store(session)
            context = await store.load(ticket)
            if context is None:
                raise ContextNotFoundError(ticket)
            try:
                changed = context.mark_next_step_complete(number, self.config.completion_marker)
            except IndexError:
                raise IndexOutOfRangeError(number, len(context.next_steps)) from None
            if changed:
                await store.save(context)
            return changed

        return await connection.run_in_transaction(operation)

    async def clear(self, ticket: str) -> int:
        async def operation(session: AsyncSession) -> int:
            return await self._store(session).clear(ticket)

        return await connection.run_in_transaction(operation)

    async def harvest_patterns(
        self,
        ticket: str,
        diff_text: str,
        markers: Optional[Sequence[str]] = None,
    ) -> list[Annotation]:
        """
        Store code-pattern signatures found in a diff.

        ``markers`` restricts which signatures are kept; the save path only
        keeps declarations and endpoints.
        """
        if ticket == DEFAULT_TICKET or not diff_text:
            return []

        signatures = self.diff_extractor.extract(diff_text)
        if markers is not None:
            signatures = [s for s in signatures if any(m in s for m in markers)]
        if not signatures:
            return []

        async def operation(session: AsyncSession) -> list[Annotation]:
            store = self._store(session)
            context = await store.load_or_new(ticket)
            added = []
            for signature in signatures:
                outcome, point = self._add(context, signature, Category.PATTERN)
                if outcome is AddOutcome.ADDED and point is not None:
                    added.append(point)
            if added:
                await store.save(context)
            return added

        return await connection.run_in_transaction(operation)

    async def harvest_after_save(self, ticket: str, diff_text: str) -> list[Annotation]:
        return await self.harvest_patterns(ticket, diff_text, markers=SAVE_HARVEST_MARKERS)

    async def cleanup(self, days: Optional[int] = None) -> CleanupResult:
        """Delete old sessions, then reclaim space."""
        days = self.config.retention_days if days is None else days

        async def operation(session: AsyncSession) -> CleanupResult:
            ledger = SessionLedger(session)
            deleted = await ledger.prune(days)
            return CleanupResult(deleted=deleted, remaining=await ledger.count())

        result = await connection.run_in_transaction(operation)
        await connection.vacuum()
        return result

    async def drop_everything(self) -> None:
        await connection.drop_all()
        await connection.vacuum()
