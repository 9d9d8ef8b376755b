"""
Extraction
==========

Turns a free-form message or a unified diff into typed candidate
annotations. Nothing here touches storage; the service layer decides what is
kept.

Usage:
    extractor = MessageExtractor(config)
    content = extractor.extract("Remember: always validate input\\nTODO: add rate limiting")
    content.directives   # ["always validate input"]
    content.todos        # ["TODO: add rate limiting"]

    patterns = DiffExtractor(limit=15).extract(diff_text)
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from ticketmemory.config import MemoryConfig


DIRECTIVE_CUES = (
    "remember:", "important:", "don't forget:", "note:",
    "always", "never", "must", "make sure",
)
DIRECTIVE_PREFIXES = ("remember:", "important:", "note:", "don't forget:")

IMPLEMENTATION_CUES = ("implement", "create", "add", "build")
TODO_CUES = ("todo", "fixme", "blocked", "waiting", "need to", "should")
ERROR_CUES = ("error", "fails", "broken")
CODE_SPAN_CUES = ("(", "func ", "def ", "type ", "interface ", "class ")

CODE_SPAN = re.compile(r"`([^`]+)`")
FUNC_CALL = re.compile(r"\b(func\s+\w+\([^)]*\)|\w+\([^)]*\))")
ENDPOINT = re.compile(r"(GET|POST|PUT|DELETE|PATCH)\s+/[^\s]+")


def _append_unique(items: list[str], value: str) -> None:
    if value not in items:
        items.append(value)


@dataclass
class ExtractedContent:
    """Everything a single pass over a message produced."""
    directives: list[str] = field(default_factory=list)
    code_patterns: list[str] = field(default_factory=list)
    implementations: list[str] = field(default_factory=list)
    todos: list[str] = field(default_factory=list)
    error_state: Optional[str] = None

    def is_empty(self) -> bool:
        return not (
            self.directives or self.code_patterns or self.implementations
            or self.todos or self.error_state
        )

    def specific_items(self) -> set[str]:
        return set(self.directives + self.code_patterns + self.implementations + self.todos)


class MessageExtractor:
    """Single-pass extraction of directives, code, implementations and todos."""

    def __init__(self, config: Optional[MemoryConfig] = None):
        self.config = config or MemoryConfig()

    def extract(self, message: str) -> ExtractedContent:
        content = ExtractedContent()
        if not message:
            return content

        self._extract_code(message, content)

        for line in message.split("\n"):
            if not line.strip():
                continue
            lower = line.lower()
            stripped = line.strip()

            directive = self._directive_from(stripped, lower)
            if directive:
                _append_unique(content.directives, directive)

            if any(cue in lower for cue in IMPLEMENTATION_CUES):
                match = ENDPOINT.search(line)
                if match:
                    _append_unique(content.implementations, match.group(0))
                elif len(line) < self.config.max_line_length:
                    _append_unique(content.implementations, stripped)

            if any(cue in lower for cue in TODO_CUES) and len(line) < self.config.max_line_length:
                _append_unique(content.todos, stripped)

        content.error_state = self._error_state(message, content)
        return content

    def _directive_from(self, stripped: str, lower: str) -> Optional[str]:
        if not any(cue in lower for cue in DIRECTIVE_CUES):
            return None

        directive = stripped
        lowered = directive.lower()
        for prefix in DIRECTIVE_PREFIXES:
            if lowered.startswith(prefix):
                directive = directive[len(prefix):].strip()
                break

        if directive and len(directive) < self.config.max_directive_length:
            return directive
        return None

    def _extract_code(self, message: str, content: ExtractedContent) -> None:
        for span in CODE_SPAN.findall(message):
            if any(cue in span for cue in CODE_SPAN_CUES):
                _append_unique(content.code_patterns, span)

        for match in FUNC_CALL.finditer(message):
            token = match.group(0)
            if "func " in token and len(token) < self.config.max_code_length:
                _append_unique(content.code_patterns, token)

    def _error_state(self, message: str, content: ExtractedContent) -> Optional[str]:
        """
        One State note for the whole message when it reports a failure.

        Only emitted when no directive, code pattern, implementation or todo
        was extracted from the message.
        """
        lower = message.lower()
        if not any(cue in lower for cue in ERROR_CUES):
            return None
        if len(message) >= self.config.max_error_message_length:
            return None

        if content.specific_items():
            return None
        return message.strip()


# =============================================================================
# Diff Extraction
# =============================================================================

GO_FUNCTION = re.compile(r"^\+func\s+(\w+)")
GO_METHOD = re.compile(r"^\+func\s+\([^)]+\)\s+(\w+)")
GO_TYPE = re.compile(r"^\+type\s+(\w+)")
GO_INTERFACE = re.compile(r"^\+type\s+(\w+)\s+interface")
PY_FUNCTION = re.compile(r"^\+\s*(?:async\s+)?def\s+(\w+)")
PY_CLASS = re.compile(r"^\+\s*class\s+(\w+)")
ROUTE_CALL = re.compile(r"router\.(HandleFunc|Method|Get|Post|Put|Delete)\([^)]+\)")
PATH_LITERAL = re.compile(r"[\"'](/(?:api|v\d+)?/?[^\"'\s]*)[\"']")

COMMENT_PREFIXES = ("//", "#")


@dataclass(frozen=True)
class DiffPattern:
    """A structural signature harvested from an added diff line."""
    signature: str
    public: bool

    @property
    def is_endpoint(self) -> bool:
        return self.signature.startswith("endpoint: ")


def _is_public(name: str) -> bool:
    return name[:1].isupper() or not name.startswith("_")


class DiffExtractor:
    """
    Harvest signatures from the added lines of a unified diff.

    Each match renders as ``func Name``, ``method Name``, ``type Name``,
    ``interface Name``, ``def name``, ``class Name`` or ``endpoint: <literal>``
    with an inline or immediately preceding comment appended when present.
    """

    def __init__(self, limit: int = 15):
        self.limit = limit

    def extract(self, diff_text: str) -> list[str]:
        return [p.signature for p in self.rank(self.scan(diff_text))]

    def scan(self, diff_text: str) -> list[DiffPattern]:
        patterns: list[DiffPattern] = []
        seen: set[str] = set()
        lines = diff_text.split("\n")

        for i, line in enumerate(lines):
            if line.startswith("+++") or line.startswith("---") or not line.startswith("+"):
                continue
            clean = line[1:].strip()
            if not clean or clean.startswith(COMMENT_PREFIXES):
                continue

            comment = self._comment_for(clean, lines[i - 1] if i > 0 else "")
            for signature, public in self._signatures(line, clean):
                if comment and not signature.startswith("endpoint: "):
                    signature = f"{signature} {comment}"
                if signature not in seen:
                    seen.add(signature)
                    patterns.append(DiffPattern(signature=signature, public=public))

        return patterns

    def rank(self, patterns: list[DiffPattern]) -> list[DiffPattern]:
        """Keep the most important patterns: endpoints and public names first."""
        if len(patterns) <= self.limit:
            return patterns
        ordered = sorted(
            enumerate(patterns),
            key=lambda item: (not (item[1].is_endpoint or item[1].public), item[0]),
        )
        keep = sorted(ordered[: self.limit], key=lambda item: item[0])
        return [p for _, p in keep]

    @staticmethod
    def _comment_for(clean: str, previous: str) -> str:
        if "//" in clean and clean.index("//") > 0:
            return clean[clean.index("//"):].strip()
        if " # " in clean:
            return clean[clean.index(" # ") + 1:].strip()

        prev = previous.strip()
        if prev.startswith("+"):
            prev_clean = prev[1:].strip()
            if prev_clean.startswith(COMMENT_PREFIXES):
                return prev_clean
        return ""

    @staticmethod
    def _signatures(line: str, clean: str) -> list[tuple[str, bool]]:
        found: list[tuple[str, bool]] = []

        method = GO_METHOD.match(line)
        if method:
            found.append((f"method {method.group(1)}", method.group(1)[:1].isupper()))
        else:
            function = GO_FUNCTION.match(line)
            if function:
                found.append((f"func {function.group(1)}", function.group(1)[:1].isupper()))

        interface = GO_INTERFACE.match(line)
        if interface:
            found.append((f"interface {interface.group(1)}", interface.group(1)[:1].isupper()))
        else:
            type_match = GO_TYPE.match(line)
            if type_match:
                found.append((f"type {type_match.group(1)}", type_match.group(1)[:1].isupper()))

        py_function = PY_FUNCTION.match(line)
        if py_function:
            found.append((f"def {py_function.group(1)}", _is_public(py_function.group(1))))

        py_class = PY_CLASS.match(line)
        if py_class:
            found.append((f"class {py_class.group(1)}", _is_public(py_class.group(1))))

        route = ROUTE_CALL.search(clean)
        if route:
            literal = PATH_LITERAL.search(route.group(0))
            if literal:
                found.append((f"endpoint: {literal.group(1)}", True))
        else:
            literal = PATH_LITERAL.search(clean)
            if literal and ("/api" in literal.group(1) or re.match(r"/v\d+", literal.group(1))):
                found.append((f"endpoint: {literal.group(1)}", True))

        return found
