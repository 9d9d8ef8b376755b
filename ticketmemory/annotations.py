"""
Annotation Store
================

The categorized, bounded, deduplicated collection of annotations kept for a
single ticket.

Each ticket holds five ordered sequences (decisions, implementations, code
patterns, current state, next steps). Ordering is insertion order, oldest
first; it drives both eviction and the 1-based numbering shown to users.

Usage:
    from ticketmemory.annotations import Annotation, Category, TicketContext

    context = TicketContext(ticket="feature-auth")
    context.add(Annotation.create("TODO: add rate limiting", Category.NEXT), max_points=20)
    context.remove(Category.NEXT, "1")
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from ticketmemory.errors import InvalidCategoryError


class Category(Enum):
    """Mutually exclusive annotation categories."""
    DECISION = "decision"
    IMPLEMENTATION = "implementation"
    PATTERN = "pattern"
    STATE = "state"
    NEXT = "next"

    @property
    def field_name(self) -> str:
        """Attribute on TicketContext and column in the categorized table."""
        return _FIELD_NAMES[self]

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def from_alias(cls, name: str) -> "Category":
        """Parse a user-facing category name, accepting common aliases."""
        category = _ALIASES.get(name.strip().lower())
        if category is None:
            raise InvalidCategoryError(name)
        return category


_FIELD_NAMES = {
    Category.DECISION: "decisions",
    Category.IMPLEMENTATION: "implementations",
    Category.PATTERN: "code_patterns",
    Category.STATE: "current_state",
    Category.NEXT: "next_steps",
}

_LABELS = {
    Category.DECISION: "Key Decisions",
    Category.IMPLEMENTATION: "Implementations",
    Category.PATTERN: "Code Patterns",
    Category.STATE: "Current State",
    Category.NEXT: "Next Steps",
}

_ALIASES = {
    "decision": Category.DECISION,
    "decisions": Category.DECISION,
    "implementation": Category.IMPLEMENTATION,
    "implementations": Category.IMPLEMENTATION,
    "impl": Category.IMPLEMENTATION,
    "pattern": Category.PATTERN,
    "patterns": Category.PATTERN,
    "code": Category.PATTERN,
    "code_patterns": Category.PATTERN,
    "state": Category.STATE,
    "status": Category.STATE,
    "current_state": Category.STATE,
    "next": Category.NEXT,
    "next_steps": Category.NEXT,
    "todo": Category.NEXT,
    "todos": Category.NEXT,
    "blocker": Category.NEXT,
    "blockers": Category.NEXT,
}

# Display order used by renderers
DISPLAY_ORDER = (
    Category.IMPLEMENTATION,
    Category.DECISION,
    Category.PATTERN,
    Category.STATE,
    Category.NEXT,
)

SELECTOR_PATTERN = re.compile(r"^(\d+,?)+$|^all$", re.IGNORECASE)

_FRACTION_PATTERN = re.compile(r"(\.\d{6})\d+")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a stored timestamp.

    Accepts ISO 8601 (including nanosecond precision written by older tools)
    and ``YYYY-MM-DD HH:MM:SS``. Unparseable values fall back to now.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        cleaned = _FRACTION_PATTERN.sub(r"\1", value.strip()).replace("Z", "+00:00")
        try:
            return datetime.fromisoformat(cleaned)
        except ValueError:
            pass
        try:
            return datetime.strptime(cleaned[:19], "%Y-%m-%d %H:%M:%S")
        except ValueError:
            pass
    return utc_now()


@dataclass
class Annotation:
    """One categorized piece of saved context text."""
    text: str
    category: Category
    created_at: datetime = field(default_factory=utc_now)
    pinned: bool = False  # Sourced from an explicit user directive

    @classmethod
    def create(cls, text: str, category: Category, pinned: bool = False) -> "Annotation":
        return cls(text=text, category=category, created_at=utc_now(), pinned=pinned)

    def to_dict(self) -> dict:
        """Convert to the stored JSON shape."""
        return {
            "text": self.text,
            "category": self.category.value,
            "timestamp": self.created_at.isoformat(),
            "is_user_directive": self.pinned,
        }

    @classmethod
    def from_dict(cls, data: dict, category: Optional[Category] = None) -> "Annotation":
        """
        Create from a stored dictionary.

        ``category`` overrides whatever is stored, which is how a sequence read
        from a categorized column keeps its items consistent with the column.
        """
        if category is None:
            try:
                category = Category(data.get("category") or Category.DECISION.value)
            except ValueError:
                category = Category.DECISION
        return cls(
            text=str(data.get("text", "")),
            category=category,
            created_at=parse_timestamp(data.get("timestamp")),
            pinned=bool(data.get("is_user_directive", False)),
        )


def truncate_with_marker(text: str, limit: int) -> str:
    """
    Shorten ``text`` to at most ``limit`` UTF-8 bytes.

    The result starts with a "[Content truncated: N bytes -> M bytes]" marker,
    keeps the head of the original (never splitting a multi-byte character)
    and ends with a trailing truncation notice. Text within the limit is
    returned unchanged. A limit too small to hold the marker and notice gets a
    bare prefix of the original instead.
    """
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text

    marker = f"[Content truncated: {len(encoded)} bytes -> {limit} bytes]\n".encode("utf-8")
    notice = b"\n\n[... truncated ...]"
    budget = limit - len(marker) - len(notice)
    if budget < 0:
        # Too small for the marker: plain prefix cut
        return encoded[:max(0, limit)].decode("utf-8", errors="ignore")

    head = encoded[:budget].decode("utf-8", errors="ignore")
    return marker.decode("utf-8") + head + notice.decode("utf-8")


def is_duplicate(points: Iterable[Annotation], text: str) -> bool:
    """Check whether an annotation with the same trimmed text exists."""
    text = text.strip()
    return any(p.text.strip() == text for p in points)


def consolidate(points: list[Annotation], max_points: int) -> list[Annotation]:
    """
    Bound a category's annotations to ``max_points``.

    Pinned annotations are always kept, even if they alone exceed the limit.
    Unpinned annotations are trimmed to the most recent
    ``max(0, max_points - pinned)`` entries. The result is pinned-then-unpinned;
    if it is still over the limit the oldest entries overall are dropped.
    """
    pinned = [p for p in points if p.pinned]
    regular = [p for p in points if not p.pinned]

    remaining_slots = max(0, max_points - len(pinned))
    if len(regular) > remaining_slots:
        regular = regular[len(regular) - remaining_slots:] if remaining_slots else []

    result = pinned + regular
    if len(result) > max_points and len(result) > len(pinned):
        result = result[len(result) - max(max_points, len(pinned)):]
    return result


def parse_selector(selector: str, count: int) -> set[int]:
    """
    Parse "all" or a comma-separated 1-based position list.

    Returns zero-based indices. Invalid or out-of-range positions are ignored.
    """
    selector = selector.strip()
    if selector.lower() == "all":
        return set(range(count))

    indices = set()
    for part in selector.split(","):
        part = part.strip()
        if not part.isdigit():
            continue
        number = int(part)
        if 0 < number <= count:
            indices.add(number - 1)
    return indices


@dataclass
class RemovalResult:
    """Outcome of removing annotations from one category."""
    category: Category
    removed: list[Annotation]
    retained: list[Annotation]

    @property
    def removed_count(self) -> int:
        return len(self.removed)


@dataclass
class TicketContext:
    """Categorized context for one ticket."""
    ticket: str
    requirements: str = ""
    decisions: list[Annotation] = field(default_factory=list)
    implementations: list[Annotation] = field(default_factory=list)
    code_patterns: list[Annotation] = field(default_factory=list)
    current_state: list[Annotation] = field(default_factory=list)
    next_steps: list[Annotation] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def points(self, category: Category) -> list[Annotation]:
        return getattr(self, category.field_name)

    def set_points(self, category: Category, points: list[Annotation]) -> None:
        setattr(self, category.field_name, points)

    def categories(self) -> dict[Category, list[Annotation]]:
        """Structured view: category -> ordered annotations."""
        return {category: self.points(category) for category in DISPLAY_ORDER}

    def add(self, point: Annotation, max_points: int) -> bool:
        """
        Append an annotation to its category.

        Returns False (and changes nothing) when an annotation with the same
        trimmed text already exists in that category. Consolidation runs when
        the category exceeds ``max_points``.
        """
        points = self.points(point.category)
        if is_duplicate(points, point.text):
            return False

        points.append(point)
        if len(points) > max_points:
            self.set_points(point.category, consolidate(points, max_points))
        return True

    def remove(self, category: Category, selector: str) -> RemovalResult:
        """Remove annotations by "all" or 1-based positions; returns what remains."""
        points = self.points(category)
        indices = parse_selector(selector, len(points))

        removed = [p for i, p in enumerate(points) if i in indices]
        retained = [p for i, p in enumerate(points) if i not in indices]
        self.set_points(category, retained)
        return RemovalResult(category=category, removed=removed, retained=retained)

    def mark_next_step_complete(self, number: int, marker: str = "[COMPLETE]") -> bool:
        """
        Prefix the Nth (1-based) next step with the completion marker.

        Returns False if it was already marked. Raises IndexError when the
        position does not exist.
        """
        if number < 1 or number > len(self.next_steps):
            raise IndexError(number)

        point = self.next_steps[number - 1]
        if point.text.startswith(marker):
            return False
        point.text = f"{marker} {point.text}"
        return True

    def counts(self) -> dict[Category, int]:
        return {category: len(self.points(category)) for category in Category}

    @property
    def total(self) -> int:
        return sum(self.counts().values())

    def pinned(self) -> list[Annotation]:
        return [p for category in Category for p in self.points(category) if p.pinned]

    def all_points(self) -> list[Annotation]:
        return [p for category in DISPLAY_ORDER for p in self.points(category)]

    def is_empty(self) -> bool:
        return self.total == 0 and not self.requirements
