"""
Context Rendering
=================

Presentation adapter: turns structured contexts, sessions and query results
into Rich output. Nothing in the core imports this module.
"""

from typing import Optional, Sequence

from rich.markup import escape

from ticketmemory import output
from ticketmemory.annotations import DISPLAY_ORDER, Annotation, Category, TicketContext
from ticketmemory.query import QueryHit, TicketOverview, latest_points
from ticketmemory.sessions import SessionStats, WorkSession

NO_DESCRIPTION = "[Session started - no description yet]"
MAX_LISTED_FILES = 3


def session_description(session: WorkSession, width: int = 80) -> str:
    """One-line description with fallbacks for sessions without a message."""
    description = session.task_description.strip().splitlines()[0] if session.task_description.strip() else ""
    if not description and session.files_modified:
        files = session.files_modified[:MAX_LISTED_FILES]
        description = "Modified: " + ", ".join(files)
        if len(session.files_modified) > MAX_LISTED_FILES:
            description += f" (+{len(session.files_modified) - MAX_LISTED_FILES} more)"
    if not description:
        description = NO_DESCRIPTION
    return output.truncate_display(description, width)


def format_point(point: Annotation, number: Optional[int] = None) -> str:
    prefix = f"{number}. " if number is not None else f"{output.icon('bullet')} "
    pin = f"[tm.pinned]{output.icon('pin')}[/] " if point.pinned else ""
    return f"{prefix}{pin}{escape(point.text)}"


def render_category(category: Category, points: Sequence[Annotation], *, numbered: bool = False) -> None:
    if not points:
        return
    lines = [
        format_point(p, i if numbered else None)
        for i, p in enumerate(points, 1)
    ]
    output.print_panel(
        "\n".join(lines),
        title=f"{output.icon(category.value)} {category.label}",
        border_style=f"tm.category.{category.value}",
    )


def render_context(context: TicketContext, stats: Optional[SessionStats] = None) -> None:
    """Bordered display: requirements, then each category, Next numbered."""
    output.print_header(f"{output.icon('ticket')} Context for {escape(context.ticket)}")

    if context.requirements:
        output.print_panel(
            escape(context.requirements),
            title=f"{output.icon('requirements')} Requirements",
        )

    for category in DISPLAY_ORDER:
        render_category(category, context.points(category), numbered=category is Category.NEXT)

    if context.total == 0 and not context.requirements:
        output.print_muted("No context saved yet.")

    if stats is not None and stats.count:
        output.print_muted(
            f"Work summary: {stats.count} session(s), {stats.total_minutes} minutes total"
        )


def render_sessions(sessions: Sequence[WorkSession], stats: SessionStats) -> None:
    if not sessions:
        return
    output.print_subheader(f"{output.icon('clock')} Recent sessions")
    for session in sessions:
        started = session.start_time.strftime("%Y-%m-%d %H:%M") if session.start_time else "unknown"
        output.print_plain(
            f"  {output.icon('bullet')} {started} ({session.duration_minutes} min) "
            f"{session_description(session)}"
        )
    output.print_muted(f"Total: {stats.count} session(s), {stats.total_minutes} minutes")


def render_ticket_list(contexts: Sequence[TicketContext]) -> None:
    if not contexts:
        output.print_muted("No tickets with saved context.")
        return

    table = output.create_table(
        title="Tickets with Context",
        columns=["Ticket", "Decisions", "Impl", "Patterns", "State", "Next", "Updated"],
    )
    for context in contexts:
        counts = context.counts()
        updated = context.updated_at.strftime("%Y-%m-%d %H:%M") if context.updated_at else ""
        table.add_row(
            escape(context.ticket),
            str(counts[Category.DECISION]),
            str(counts[Category.IMPLEMENTATION]),
            str(counts[Category.PATTERN]),
            str(counts[Category.STATE]),
            str(counts[Category.NEXT]),
            updated,
        )
    output.print_table(table)


def render_hits(title: str, hits: Sequence[QueryHit], empty_message: str) -> None:
    output.print_subheader(title, style="tm.accent")
    if not hits:
        output.print_muted(empty_message)
        return
    for hit in hits:
        pin = f"[tm.pinned]{output.icon('pin')}[/] " if hit.annotation.pinned else ""
        output.console.print(
            f"{output.icon('bullet')} [tm.ticket]{escape('[' + hit.ticket + ']')}[/] "
            f"{pin}{escape(hit.annotation.text)}"
        )


def render_overviews(overviews: Sequence[TicketOverview]) -> None:
    output.print_subheader(f"{output.icon('clipboard')} All Tickets with Context", style="tm.accent")
    if not overviews:
        output.print_muted("No tickets with saved context.")
        return

    for item in overviews:
        output.print_divider()
        output.console.print(f"{output.icon('ticket')} [tm.ticket]{escape(item.ticket)}[/]")
        if item.updated_at:
            output.print_muted(f"  Updated: {item.updated_at.strftime('%Y-%m-%d %H:%M')}")
        output.print_plain(f"  Sessions: {item.sessions} ({item.minutes} minutes total)")
        line = f"  Context: {item.total} points"
        if item.pinned:
            line += f" ({item.pinned} user directives)"
        if item.blockers:
            line += f" [{item.blockers} BLOCKERS]"
        output.print_plain(line)
        if item.requirements:
            output.print_plain(f"  Requirements: {output.truncate_display(item.requirements, 70)}")
    output.print_divider()


def render_recent(contexts: Sequence[TicketContext], days: int) -> None:
    output.print_subheader(
        f"{output.icon('calendar')} Recently Updated Context (Last {days} Days)", style="tm.accent"
    )
    if not contexts:
        output.print_muted(f"No context updated in the last {days} days.")
        return

    for context in contexts:
        updated = context.updated_at.strftime("%b %d %H:%M") if context.updated_at else ""
        output.console.print(
            f"\n{output.icon('clipboard')} [tm.ticket]{escape(context.ticket)}[/] [tm.timestamp](Updated: {updated})[/]"
        )
        if context.requirements:
            output.print_plain(f"  Requirements: {output.truncate_display(context.requirements, 70)}")
        points = latest_points(context)
        if points:
            output.print_plain("  Recent Context:")
            for point in points:
                pin = f"{output.icon('pin')} " if point.pinned else ""
                output.print_plain(f"    {output.icon('bullet')} {pin}{output.truncate_display(point.text, 65)}")
