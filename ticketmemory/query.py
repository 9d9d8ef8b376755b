"""
Cross-Ticket Queries
====================

Pure filters over stored contexts used by the ``ticketmemory-query`` tool.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional

from ticketmemory.annotations import Annotation, TicketContext
from ticketmemory.errors import ContextNotFoundError
from ticketmemory.sessions import SessionStats

QUERY_NAMES = ("blockers", "todos", "decisions", "directives", "all", "recent")


@dataclass
class QueryHit:
    ticket: str
    annotation: Annotation


@dataclass
class TicketOverview:
    ticket: str
    updated_at: Optional[datetime]
    requirements: str
    total: int
    pinned: int
    blockers: int
    sessions: int
    minutes: int


def is_blocker(text: str) -> bool:
    lower = text.lower()
    return "blocked" in lower or "waiting" in lower or "depends on" in lower


def is_todo(text: str) -> bool:
    lower = text.lower()
    return any(p in lower for p in ("todo", "not implemented", "needs implementation", "to be done"))


def is_decision(text: str) -> bool:
    lower = text.lower()
    return (
        "decided to" in lower
        or ("using" in lower and "because" in lower)
        or "chose" in lower
        or "instead of" in lower
    )


def _select(
    contexts: Iterable[TicketContext],
    predicate: Callable[[Annotation], bool],
) -> list[QueryHit]:
    return [
        QueryHit(ticket=context.ticket, annotation=point)
        for context in contexts
        for point in context.all_points()
        if predicate(point)
    ]


def find_blockers(contexts: Iterable[TicketContext]) -> list[QueryHit]:
    return _select(contexts, lambda p: is_blocker(p.text))


def find_todos(contexts: Iterable[TicketContext]) -> list[QueryHit]:
    return _select(contexts, lambda p: is_todo(p.text))


def find_decisions(contexts: Iterable[TicketContext]) -> list[QueryHit]:
    return _select(contexts, lambda p: is_decision(p.text))


def find_directives(contexts: Iterable[TicketContext]) -> list[QueryHit]:
    return _select(contexts, lambda p: p.pinned)


def overview(context: TicketContext, stats: Optional[SessionStats] = None) -> TicketOverview:
    stats = stats or SessionStats()
    points = context.all_points()
    return TicketOverview(
        ticket=context.ticket,
        updated_at=context.updated_at,
        requirements=context.requirements,
        total=len(points),
        pinned=sum(1 for p in points if p.pinned),
        blockers=sum(1 for p in points if "blocked" in p.text.lower() or "waiting" in p.text.lower()),
        sessions=stats.count,
        minutes=stats.total_minutes,
    )


def latest_points(context: TicketContext, limit: int = 3) -> list[Annotation]:
    """The ``limit`` most recently created annotations, oldest first."""
    points = sorted(context.all_points(), key=lambda p: p.created_at.replace(tzinfo=None))
    return points[-limit:] if limit else []


def filter_ticket(contexts: list[TicketContext], ticket: Optional[str]) -> list[TicketContext]:
    """Restrict results to one ticket; unknown tickets raise ContextNotFoundError."""
    if not ticket:
        return contexts
    selected = [c for c in contexts if c.ticket == ticket]
    if not selected:
        raise ContextNotFoundError(ticket)
    return selected
