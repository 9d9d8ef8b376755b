#!/usr/bin/env python
"""
Ticket Memory Query CLI
=======================

Read-only reports across every ticket. Output goes to stderr so it can sit
alongside hook output without being parsed.

Usage:
    ticketmemory-query blockers
    ticketmemory-query todos --ticket feature-auth
    ticketmemory-query all
    ticketmemory-query recent
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from dotenv import load_dotenv

from ticketmemory import output
from ticketmemory.config import MemoryConfig, debug_enabled
from ticketmemory.db import close_db, init_db
from ticketmemory.errors import StorageUnavailableError, TicketMemoryError
from ticketmemory.query import (
    QUERY_NAMES,
    filter_ticket,
    find_blockers,
    find_decisions,
    find_directives,
    find_todos,
    overview,
)
from ticketmemory.render import render_hits, render_overviews, render_recent
from ticketmemory.service import MemoryService

logger = logging.getLogger(__name__)


class QueryArgumentParser(argparse.ArgumentParser):
    """Argument parser that reports bad input with exit status 1."""

    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        sys.stderr.write(f"{self.prog}: error: {message}\n")
        sys.exit(1)


HIT_QUERIES = {
    "blockers": (find_blockers, "pin", "Active Blockers and Dependencies", "No blockers found."),
    "todos": (find_todos, "next", "TODOs and Unimplemented Features", "No TODOs found."),
    "decisions": (find_decisions, "decision", "Technical Decisions Made", "No technical decisions found."),
    "directives": (find_directives, "pin", "User Directives (Must Follow)", "No user directives found."),
}


async def run_query(args: argparse.Namespace, config: MemoryConfig) -> None:
    service = MemoryService(config)
    await init_db(config.resolve_db_path(), classifier=service.classifier)
    try:
        if args.command == "recent":
            contexts = filter_ticket(await service.list_contexts(recent_only=True), args.ticket)
            render_recent(contexts, config.recent_days)
            return

        contexts = filter_ticket(await service.list_contexts(), args.ticket)

        if args.command == "all":
            stats = await service.session_stats()
            render_overviews([overview(c, stats.get(c.ticket)) for c in contexts])
            return

        finder, icon_name, title, empty = HIT_QUERIES[args.command]
        render_hits(f"{output.icon(icon_name)} {title}:", finder(contexts), empty)
    finally:
        await close_db()


def build_parser() -> argparse.ArgumentParser:
    parser = QueryArgumentParser(
        prog="ticketmemory-query",
        description="Ticket Memory Query Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  blockers    Show all blocked items across tickets
  todos       Show all TODOs and unimplemented features
  decisions   Show technical decisions made
  directives  Show all user directives (pinned items)
  all         Show all tickets with context counts
  recent      Show recently updated context
        """,
    )
    parser.add_argument("command", choices=QUERY_NAMES, help="Query to run")
    parser.add_argument("--ticket", help="Restrict results to one ticket")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    setup_level = logging.DEBUG if debug_enabled() else logging.WARNING
    output.setup_rich_logging(setup_level)
    output.use_stderr()

    args = build_parser().parse_args(argv)

    try:
        config = MemoryConfig.load()
        asyncio.run(run_query(args, config))
    except StorageUnavailableError as e:
        logger.debug("Storage unavailable: %s", e)
        return 0
    except TicketMemoryError as e:
        output.print_error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
