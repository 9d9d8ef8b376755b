"""
Text Classifier
===============

Deterministic rule-based categorization and importance gating for
candidate annotations.

The rule set is an immutable, ordered tuple of ``ClassificationRule``
objects built once at import time. ``TextClassifier`` evaluates them in order
and the first match wins, falling back to ``Category.DECISION`` so every text
receives exactly one category.
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from ticketmemory.annotations import Category


# =============================================================================
# Phrase Tables
# =============================================================================

TRIVIAL_PHRASES = (
    "fixed typo", "added comment", "renamed variable",
    "formatted code", "updated import", "minor change",
    "added function", "created file", "updated", "modified",
    "changed", "removed unused", "cleaned up",
)

IMPORTANT_PHRASES = (
    "decided to", "blocked by", "waiting on", "breaks when",
    "must use", "don't use", "security", "credential",
    "todo", "important:", "remember:", "note:", "always", "never",
    "gotcha", "warning:", "error:", "fails when", "requires",
    "depends on", "incompatible with", "workaround",
)

REASONING_PHRASES = ("because", "instead of", "can't", "won't work", "fails")

CALL_PATTERN = re.compile(r"\w+\([^)]*\)")
REST_METHOD_PATTERN = re.compile(r"(GET|POST|PUT|DELETE|PATCH)\s+/")

# Signatures rendered by the diff extractor
SIGNATURE_PREFIXES = ("func ", "method ", "type ", "interface ", "def ", "class ", "endpoint: ")


def _contains_any(text: str, phrases: Sequence[str]) -> bool:
    return any(phrase in text for phrase in phrases)


# =============================================================================
# Category Rules
# =============================================================================

@dataclass(frozen=True)
class ClassificationRule:
    """One ordered (predicate, category) pair."""
    name: str
    category: Category
    predicate: Callable[[str, str], bool]  # (original text, lowercased text)

    def matches(self, text: str, lower: str) -> bool:
        return self.predicate(text, lower)


def _looks_like_code(text: str, lower: str) -> bool:
    return (
        _contains_any(text, ("func ", "def ", "type ", "struct{", "interface{", "()", "HandleFunc"))
        or CALL_PATTERN.search(text) is not None
    )


def _is_next_step(text: str, lower: str) -> bool:
    return _contains_any(lower, ("todo", "blocked", "waiting", "need to", "next", "pending"))


def _is_state(text: str, lower: str) -> bool:
    return (
        _contains_any(lower, ("working", "broken", "complete", "fails", "bug", "fixed"))
        or _contains_any(text, ("SUCCESS:", "ERROR:", "WARNING:"))
    )


def _is_implementation(text: str, lower: str) -> bool:
    return (
        _contains_any(lower, ("endpoint", "api", "function", "created", "implemented", "added"))
        or REST_METHOD_PATTERN.search(text) is not None
    )


def _is_decision(text: str, lower: str) -> bool:
    return _contains_any(lower, ("decided", "chose", "using", "because", "instead of", "prefer", "will use"))


DEFAULT_RULES = (
    ClassificationRule("code", Category.PATTERN, _looks_like_code),
    ClassificationRule("next-step", Category.NEXT, _is_next_step),
    ClassificationRule("state", Category.STATE, _is_state),
    ClassificationRule("implementation", Category.IMPLEMENTATION, _is_implementation),
    ClassificationRule("decision", Category.DECISION, _is_decision),
)


# =============================================================================
# Importance Gates
# =============================================================================

def _pattern_gate(text: str, lower: str) -> bool:
    return (
        text.startswith(SIGNATURE_PREFIXES)
        or _contains_any(text, ("func ", "def ", "type ", "()"))
        or CALL_PATTERN.search(text) is not None
    )


def _decision_gate(text: str, lower: str) -> bool:
    return _contains_any(lower, ("because", "instead", "decided", "chose"))


def _implementation_gate(text: str, lower: str) -> bool:
    return REST_METHOD_PATTERN.search(text) is not None or _contains_any(lower, ("endpoint", "api"))


def _state_gate(text: str, lower: str) -> bool:
    return (
        _contains_any(text, ("SUCCESS:", "ERROR:", "WARNING:"))
        or _contains_any(lower, ("working", "broken"))
    )


CATEGORY_GATES = {
    Category.PATTERN: _pattern_gate,
    Category.DECISION: _decision_gate,
    Category.IMPLEMENTATION: _implementation_gate,
    Category.STATE: _state_gate,
    Category.NEXT: lambda text, lower: True,
}


class TextClassifier:
    """
    Pure classifier over an ordered rule set.

    Usage:
        classifier = TextClassifier()
        classifier.classify("TODO: fix bug")          # Category.NEXT
        classifier.is_important("fixed typo")        # False
        classifier.is_important("GET /api/users", Category.IMPLEMENTATION)  # True
    """

    def __init__(
        self,
        rules: Sequence[ClassificationRule] = DEFAULT_RULES,
        fallback: Category = Category.DECISION,
    ):
        self.rules = tuple(rules)
        self.fallback = fallback

    def classify(self, text: str) -> Category:
        """Assign exactly one category; the first matching rule wins."""
        lower = text.lower()
        for rule in self.rules:
            if rule.matches(text, lower):
                return rule.category
        return self.fallback

    def is_important(self, text: str, category: Optional[Category] = None) -> bool:
        """
        Judge whether a candidate annotation is worth keeping.

        Without a category, importance signals override trivial phrases and
        technical reasoning language is the last way in. With a category the
        category-specific gate applies instead.
        """
        lower = text.lower()

        if category is not None:
            return CATEGORY_GATES[category](text, lower)

        if _contains_any(lower, IMPORTANT_PHRASES):
            return True
        if _contains_any(lower, TRIVIAL_PHRASES):
            return False
        return _contains_any(lower, REASONING_PHRASES)
