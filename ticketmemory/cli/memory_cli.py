#!/usr/bin/env python
"""
Ticket Memory Hook CLI
======================

Command-line hook that loads and saves per-ticket context around a coding
session. It never fails the surrounding workflow: environment errors and bad
arguments exit with status 0.

Usage:
    ticketmemory load
    echo '{"session_id": "abc", "last_human_message": "..."}' | ticketmemory save
    ticketmemory cleanup 30
    ticketmemory extract-ticket origin/feature-auth
    ticketmemory context save decision feature-auth "Use Redis because ..."
    ticketmemory context remove next feature-auth 2,4
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable, Optional, TypeVar

from dotenv import load_dotenv

from ticketmemory import git
from ticketmemory.annotations import SELECTOR_PATTERN, Category
from ticketmemory.config import MemoryConfig, debug_enabled
from ticketmemory.db import close_db, init_db
from ticketmemory.errors import (
    ContextNotFoundError,
    StorageUnavailableError,
    TicketMemoryError,
    ValidationError,
)
from ticketmemory.output import (
    print_error,
    print_info,
    print_muted,
    print_plain,
    print_success,
    print_warning,
    prompt,
    setup_rich_logging,
)
from ticketmemory.render import render_category, render_context, render_sessions, render_ticket_list
from ticketmemory.service import AddOutcome, MemoryService
from ticketmemory.tickets import DEFAULT_TICKET

logger = logging.getLogger(__name__)

T = TypeVar("T")

HOOK_PREFIX = "[Memory]"
CLEAR_CONFIRMATION = "yes"
DROP_CONFIRMATION = "DELETE EVERYTHING"


class HookArgumentParser(argparse.ArgumentParser):
    """Argument parser that prints usage and exits 0 on bad input."""

    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        sys.stderr.write(f"{self.prog}: {message}\n")
        sys.exit(0)


def run_with_db(config: MemoryConfig, operation: Callable[[MemoryService], Awaitable[T]]) -> T:
    """Open the database, run ``operation`` with a service, and close it."""

    async def runner() -> T:
        service = MemoryService(config)
        await init_db(config.resolve_db_path(), classifier=service.classifier)
        try:
            return await operation(service)
        finally:
            await close_db()

    return asyncio.run(runner())


def current_ticket(service: MemoryService) -> str:
    return service.resolve_ticket(git.current_branch())


def _parse_category(name: str) -> Optional[Category]:
    try:
        return Category.from_alias(name)
    except ValidationError as e:
        print_error(str(e))
        print_muted("Valid categories: decision, implementation, pattern, state, next")
        return None


# =============================================================================
# Session Commands
# =============================================================================

def cmd_load(args: argparse.Namespace, config: MemoryConfig) -> int:
    """Show recent sessions and the stored context for the current ticket."""

    async def operation(service: MemoryService):
        ticket = current_ticket(service)
        if ticket == DEFAULT_TICKET:
            return None
        return await service.summary(ticket)

    summary = run_with_db(config, operation)
    if summary is None:
        print_plain(f"{HOOK_PREFIX} No ticket found in branch name")
        return 0

    print_plain(f"{HOOK_PREFIX} Loading context for {summary.ticket}")
    render_sessions(summary.recent_sessions, summary.stats)
    if summary.context is not None:
        render_context(summary.context, summary.stats)
    return 0


def read_hook_input(stream=None) -> Optional[dict[str, Any]]:
    """Parse the JSON object the hook receives on stdin."""
    stream = stream or sys.stdin
    try:
        data = json.loads(stream.read() or "{}")
    except (OSError, json.JSONDecodeError) as e:
        logger.debug("Failed to parse hook input: %s", e)
        return None
    if not isinstance(data, dict):
        logger.debug("Hook input is not a JSON object")
        return None
    return data


def cmd_save(args: argparse.Namespace, config: MemoryConfig) -> int:
    """Record the session and extract context from the last message."""
    data = read_hook_input()
    if data is None:
        print_plain(f"{HOOK_PREFIX} Failed to save context")
        return 0

    session_id = str(data.get("session_id") or "")
    message = str(data.get("last_human_message") or "")
    branch = git.current_branch()

    async def operation(service: MemoryService):
        result = await service.save_session(
            branch=branch,
            message=message,
            session_id=session_id or None,
            stats=git.modified_files(),
            commit_sha=git.head_commit(),
        )
        if result.ticket != DEFAULT_TICKET:
            await service.harvest_after_save(result.ticket, git.session_diff())
        return result

    result = run_with_db(config, operation)
    logger.debug("Saved %d annotation(s) for %s", len(result.added), result.ticket)
    print_plain(f"{HOOK_PREFIX} Context saved for ticket: {result.ticket}")
    return 0


def cmd_cleanup(args: argparse.Namespace, config: MemoryConfig) -> int:
    """Delete sessions older than the retention window."""
    days = config.retention_days
    if args.days is not None:
        try:
            days = int(args.days)
        except ValueError:
            print_error(f"Invalid number of days '{args.days}'")
            return 0
        if days < 0:
            print_error(f"Invalid number of days '{args.days}'")
            return 0

    result = run_with_db(config, lambda service: service.cleanup(days))
    print_success(f"Deleted {result.deleted} session(s) older than {days} days")
    print_muted(f"{result.remaining} session(s) remaining")
    return 0


def cmd_extract_ticket(args: argparse.Namespace, config: MemoryConfig) -> int:
    service = MemoryService(config)
    sys.stdout.write(service.resolve_ticket(args.branch))
    sys.stdout.flush()
    return 0


# =============================================================================
# Context Commands
# =============================================================================

def cmd_context_load(args: argparse.Namespace, config: MemoryConfig) -> int:
    async def operation(service: MemoryService):
        ticket = args.ticket or current_ticket(service)
        summary = await service.summary(ticket)
        return summary

    summary = run_with_db(config, operation)
    if summary.context is None:
        print_info(f"No context found for {summary.ticket}")
        return 0
    render_context(summary.context, summary.stats)
    return 0


def cmd_context_add(args: argparse.Namespace, config: MemoryConfig) -> int:
    """Add an auto-categorized annotation if it passes the importance gate."""
    text = " ".join(args.text)
    outcome, point = run_with_db(config, lambda service: service.add_annotation(args.ticket, text))
    if outcome is AddOutcome.ADDED and point is not None:
        print_success(f"Context saved for {args.ticket} ({point.category.value})")
    elif outcome is AddOutcome.DUPLICATE:
        print_muted("Already recorded.")
    else:
        print_muted("Not important enough to keep.")
    return 0


def cmd_context_save(args: argparse.Namespace, config: MemoryConfig) -> int:
    """Save an explicit, pinned annotation: save <category> [ticket] <text...>."""
    category = _parse_category(args.category)
    if category is None:
        return 0

    rest = list(args.rest)

    async def operation(service: MemoryService):
        if len(rest) >= 2:
            ticket, text = rest[0], " ".join(rest[1:])
        else:
            ticket, text = current_ticket(service), rest[0]
        if ticket == DEFAULT_TICKET:
            return ticket, None
        return ticket, await service.add_annotation(ticket, text, category, pinned=True)

    ticket, result = run_with_db(config, operation)
    if result is None:
        print_error("No ticket found in branch name")
        return 0

    outcome, _ = result
    if outcome is AddOutcome.ADDED:
        print_success(f"Context saved for {ticket} ({category.value})")
    else:
        print_muted("Already recorded.")
    return 0


def cmd_context_requirements(args: argparse.Namespace, config: MemoryConfig) -> int:
    text = " ".join(args.text)
    run_with_db(config, lambda service: service.set_requirements(args.ticket, text))
    print_success(f"Requirements set for {args.ticket}")
    return 0


def cmd_context_list(args: argparse.Namespace, config: MemoryConfig) -> int:
    contexts = run_with_db(config, lambda service: service.list_contexts())
    render_ticket_list(contexts)
    return 0


def cmd_context_sync_git(args: argparse.Namespace, config: MemoryConfig) -> int:
    """Harvest code-pattern signatures from the staged or unstaged diff."""

    async def operation(service: MemoryService):
        ticket = current_ticket(service)
        if ticket == DEFAULT_TICKET:
            return ticket, None
        return ticket, await service.harvest_patterns(ticket, git.staged_or_unstaged_diff())

    ticket, added = run_with_db(config, operation)
    if added is None:
        print_error("No ticket found in branch name")
    elif added:
        print_success(f"Synced {len(added)} code pattern(s) from git diff for {ticket}")
    else:
        print_muted("No new code patterns found in git diff")
    return 0


def cmd_context_clear(args: argparse.Namespace, config: MemoryConfig) -> int:
    answer = prompt(
        f"Clear all context for {args.ticket}? This cannot be undone. Type '{CLEAR_CONFIRMATION}' to confirm"
    )
    if answer.strip().lower() != CLEAR_CONFIRMATION:
        print_muted("Cancelled.")
        return 0

    removed = run_with_db(config, lambda service: service.clear(args.ticket))
    if removed:
        print_success(f"Context cleared for {args.ticket}")
    else:
        print_info(f"No context found for {args.ticket}")
    return 0


def cmd_context_mark_complete(args: argparse.Namespace, config: MemoryConfig) -> int:
    try:
        number = int(args.number)
    except ValueError:
        number = 0
    if number < 1:
        print_error(f"Invalid TODO number '{args.number}'")
        return 0

    try:
        changed = run_with_db(config, lambda service: service.mark_complete(args.ticket, number))
    except (ContextNotFoundError, ValidationError) as e:
        print_error(str(e))
        return 0

    if changed:
        print_success(f"Marked next step #{number} complete for {args.ticket}")
    else:
        print_muted(f"Next step #{number} is already complete")
    return 0


def _drop_everything(config: MemoryConfig) -> int:
    print_warning("This will DELETE ALL memory data!")
    answer = prompt(f"Type '{DROP_CONFIRMATION}' to confirm")
    if answer.strip() != DROP_CONFIRMATION:
        print_muted("Cancelled.")
        return 0

    run_with_db(config, lambda service: service.drop_everything())
    print_success("All memory data has been deleted and tables recreated.")
    return 0


def cmd_context_remove(args: argparse.Namespace, config: MemoryConfig) -> int:
    """
    Remove annotations.

    Forms:
        remove all                            drop everything (typed confirmation)
        remove <category>                     interactive, ticket from branch
        remove <category> <selector>          ticket from branch
        remove <category> <ticket> [selector]
    """
    if args.category == "all" and not args.rest:
        return _drop_everything(config)

    category = _parse_category(args.category)
    if category is None:
        return 0

    rest = list(args.rest)
    explicit_ticket: Optional[str] = None
    selector: Optional[str] = None
    if rest:
        if SELECTOR_PATTERN.match(rest[0]):
            selector = rest[0]
        else:
            explicit_ticket = rest[0]
            selector = rest[1] if len(rest) > 1 else None

    async def load(service: MemoryService):
        ticket = explicit_ticket or current_ticket(service)
        if ticket == DEFAULT_TICKET:
            return ticket, None
        return ticket, await service.load_context(ticket)

    ticket, context = run_with_db(config, load)
    if ticket == DEFAULT_TICKET:
        print_error("No ticket found in branch name")
        return 0
    if context is None:
        print_info(f"No context found for {ticket}")
        return 0

    points = context.points(category)
    if not points:
        print_info(f"No {category.label.lower()} saved for {ticket}")
        return 0

    if selector is None:
        render_category(category, points, numbered=True)
        selector = prompt("Enter numbers to remove (e.g. 1,3,5), 'all', or 'cancel'").strip()
        if not selector or selector.lower() == "cancel":
            print_muted("Cancelled.")
            return 0

    try:
        result = run_with_db(config, lambda service: service.remove(ticket, category, selector))
    except TicketMemoryError as e:
        print_error(str(e))
        return 0

    if result.removed_count:
        print_success(f"Removed {result.removed_count} item(s) from {category.label} for {ticket}")
        if result.retained:
            render_category(category, result.retained, numbered=True)
    else:
        print_muted("Nothing removed.")
    return 0


# =============================================================================
# Entry Point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = HookArgumentParser(
        prog="ticketmemory",
        description="Ticket Memory - per-ticket context for coding sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("load", help="Show recent sessions and context for the current ticket")
    subparsers.add_parser("save", help="Save session context from JSON on stdin")

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete old sessions")
    cleanup_parser.add_argument("days", nargs="?", help="Retention in days (default: 30)")

    extract_parser = subparsers.add_parser("extract-ticket", help="Print the ticket for a branch name")
    extract_parser.add_argument("branch", help="Branch name")

    context_parser = subparsers.add_parser("context", help="Manage ticket context")
    context_sub = context_parser.add_subparsers(dest="context_command", help="Context command")

    load_parser = context_sub.add_parser("load", help="Show context for a ticket")
    load_parser.add_argument("ticket", nargs="?", help="Ticket (default: current branch)")

    add_parser = context_sub.add_parser("add", help="Add an auto-categorized annotation")
    add_parser.add_argument("ticket", help="Ticket")
    add_parser.add_argument("text", nargs="+", help="Annotation text")

    save_parser = context_sub.add_parser("save", help="Save a pinned annotation to a category")
    save_parser.add_argument("category", help="Category name")
    save_parser.add_argument("rest", nargs="+", help="[ticket] text...")

    req_parser = context_sub.add_parser("requirements", help="Set requirements text")
    req_parser.add_argument("ticket", help="Ticket")
    req_parser.add_argument("text", nargs="+", help="Requirements text")

    context_sub.add_parser("list", help="List tickets with context")
    context_sub.add_parser("sync-git", help="Harvest code patterns from the git diff")

    clear_parser = context_sub.add_parser("clear", help="Clear all context for a ticket")
    clear_parser.add_argument("ticket", help="Ticket")

    mark_parser = context_sub.add_parser("mark-complete", help="Mark a next step complete")
    mark_parser.add_argument("ticket", help="Ticket")
    mark_parser.add_argument("number", help="Next step number (1-based)")

    remove_parser = context_sub.add_parser("remove", help="Remove annotations, or 'all' to drop everything")
    remove_parser.add_argument("category", help="Category name, or 'all'")
    remove_parser.add_argument("rest", nargs="*", help="[ticket] [selector]")

    return parser


COMMANDS = {
    "load": cmd_load,
    "save": cmd_save,
    "cleanup": cmd_cleanup,
    "extract-ticket": cmd_extract_ticket,
}

CONTEXT_COMMANDS = {
    "load": cmd_context_load,
    "add": cmd_context_add,
    "save": cmd_context_save,
    "requirements": cmd_context_requirements,
    "list": cmd_context_list,
    "sync-git": cmd_context_sync_git,
    "clear": cmd_context_clear,
    "mark-complete": cmd_context_mark_complete,
    "remove": cmd_context_remove,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    setup_rich_logging(logging.DEBUG if debug_enabled() else logging.WARNING)

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "context":
        handler = CONTEXT_COMMANDS.get(args.context_command or "")
    else:
        handler = COMMANDS.get(args.command or "")
    if handler is None:
        return 0

    try:
        config = MemoryConfig.load()
        return handler(args, config)
    except StorageUnavailableError as e:
        logger.debug("Storage unavailable: %s", e)
        return 0
    except ValidationError as e:
        print_error(str(e))
        return 0


if __name__ == "__main__":
    sys.exit(main())
