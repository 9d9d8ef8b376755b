"""
Rich Output Utilities
=====================

Unified terminal output for ticketmemory using the Rich library.
Provides consistent styling, icons with ASCII fallbacks, prompts and the
logging handler.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.rule import Rule
from rich.table import Table
from rich.theme import Theme


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class MemoryColors:
    """Palette using hex for truecolor terminal support."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    accent: str = "#F59E0B"    # warm accent
    cool: str = "#22D3EE"      # cool accent
    steel: str = "#94A3B8"     # secondary accent
    ok: str = "#22C55E"        # success green
    warn: str = "#FBBF24"      # warning yellow
    err: str = "#EF4444"       # error red
    pin: str = "#F472B6"       # pinned directives


def memory_theme(colors: MemoryColors = MemoryColors()) -> Theme:
    """
    Rich Theme for the ticketmemory tools.

    Style names are semantic so you can use them everywhere:
      console.print("...", style="tm.ok")
    """
    return Theme(
        {
            "tm.border": f"{colors.cool}",
            "tm.accent": f"bold {colors.accent}",
            "tm.muted": f"{colors.dim}",
            "tm.text": f"{colors.ink}",

            # Status
            "tm.ok": f"bold {colors.ok}",
            "tm.warn": f"bold {colors.warn}",
            "tm.err": f"bold {colors.err}",
            "tm.info": f"{colors.cool}",

            # Data display
            "tm.key": f"{colors.steel}",
            "tm.number": f"bold {colors.accent}",
            "tm.ticket": f"bold {colors.cool}",
            "tm.timestamp": f"{colors.dim}",
            "tm.pinned": f"bold {colors.pin}",

            # Categories
            "tm.category.decision": f"bold {colors.accent}",
            "tm.category.implementation": f"bold {colors.ok}",
            "tm.category.pattern": f"bold {colors.cool}",
            "tm.category.state": f"bold {colors.warn}",
            "tm.category.next": f"bold {colors.steel}",

            "tm.table.header": f"bold {colors.cool}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can handle Unicode/emoji characters."""
    if os.name == 'nt':
        encoding = (sys.stdout.encoding or '').lower()
        # Only UTF-8 can reliably handle emoji on Windows
        return 'utf-8' in encoding or 'utf8' in encoding
    return True


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "warning": "⚠️",
    "info": "ℹ",
    "bullet": "•",
    "arrow_right": "→",
    "clock": "\U0001F551",
    "ticket": "\U0001F3AB",
    "calendar": "\U0001F4C5",
    "clipboard": "\U0001F4CB",
    "pin": "\U0001F4CC",
    "requirements": "\U0001F4CB",
    "decision": "\U0001F3AF",
    "implementation": "\U0001F527",
    "pattern": "\U0001F9E9",
    "state": "\U0001F4CA",
    "next": "\U0001F4DD",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "warning": "[!]",
    "info": "[i]",
    "bullet": "-",
    "arrow_right": "->",
    "clock": "[T]",
    "ticket": "[#]",
    "calendar": "[D]",
    "clipboard": "[=]",
    "pin": "[PIN]",
    "requirements": "[REQ]",
    "decision": "[DEC]",
    "implementation": "[IMPL]",
    "pattern": "[CODE]",
    "state": "[STATE]",
    "next": "[NEXT]",
}

_USE_UNICODE = _can_use_unicode()
_ICONS = _UNICODE_ICONS if _USE_UNICODE else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# =============================================================================
# Global Console Instance
# =============================================================================

# stdout console for the hook, stderr console for the query tool
stdout_console = Console(theme=memory_theme(), emoji=_USE_UNICODE)
stderr_console = Console(theme=memory_theme(), emoji=_USE_UNICODE, stderr=True)

console = stdout_console


def use_stderr(enabled: bool = True) -> None:
    """Route all helper output to stderr (or back to stdout)."""
    global console
    console = stderr_console if enabled else stdout_console


def get_console() -> Console:
    return console


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"[tm.ok]{icon('check')} {escape(message)}[/]")


def print_error(message: str) -> None:
    """Print an error message with X."""
    console.print(f"[tm.err]{icon('cross')} {escape(message)}[/]")


def print_warning(message: str) -> None:
    console.print(f"[tm.warn]{icon('warning')} {escape(message)}[/]")


def print_info(message: str) -> None:
    console.print(f"[tm.info]{icon('info')} {escape(message)}[/]")


def print_muted(message: str) -> None:
    """Print muted/secondary text."""
    console.print(f"[tm.muted]{escape(message)}[/]")


def print_plain(message: str = "") -> None:
    """Print text without markup interpretation."""
    console.print(message, markup=False, highlight=False)


# =============================================================================
# Headers & Sections
# =============================================================================

def print_header(title: str, style: str = "tm.accent") -> None:
    """Print a prominent section header with rule lines."""
    console.print()
    console.print(Rule(f"[{style}]{title}[/]", style=style))


def print_subheader(title: str, style: str = "tm.info") -> None:
    """Print a smaller subsection header."""
    console.print(f"\n[{style}]{title}[/]")


def print_divider(style: str = "tm.muted") -> None:
    console.print(Rule(style=style))


def print_panel(
    content: str,
    *,
    title: Optional[str] = None,
    subtitle: Optional[str] = None,
    border_style: str = "tm.border",
) -> None:
    """Print content in a styled panel."""
    console.print(Panel(
        content,
        title=f"[bold]{title}[/]" if title else None,
        subtitle=f"[tm.muted]{subtitle}[/]" if subtitle else None,
        border_style=border_style,
        padding=(0, 1),
    ))


def create_table(
    *,
    title: Optional[str] = None,
    columns: Optional[List[str]] = None,
    border_style: str = "tm.border",
) -> Table:
    """Create a styled Rich Table."""
    table = Table(
        title=title,
        header_style="tm.table.header",
        border_style=border_style,
        title_style="tm.accent",
    )
    if columns:
        for col in columns:
            table.add_column(col)
    return table


def print_table(table: Table) -> None:
    console.print(table)


# =============================================================================
# Text Helpers
# =============================================================================

def truncate_display(text: str, n: int) -> str:
    """Shorten text for one-line display, ending with "..." when cut."""
    if len(text) <= n:
        return text
    if n <= 3:
        return "..."
    return text[:n - 3] + "..."


# =============================================================================
# Interactive Prompts
# =============================================================================

def prompt(message: str, *, default: Optional[str] = None) -> str:
    """
    Prompt for text input.

    Returns the user's input string (empty on end of input).
    """
    try:
        return Prompt.ask(f"[tm.accent]{message}[/]", default=default, console=console) or ""
    except EOFError:
        return ""


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.WARNING) -> None:
    """
    Configure Python logging to use Rich for log output on stderr.

    Usage:
        setup_rich_logging(logging.DEBUG)
        logging.getLogger(__name__).debug("visible")
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=stderr_console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
    )
