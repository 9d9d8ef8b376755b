"""
Configuration Management
========================

Handles loading the memory policy from environment variables and an optional
JSON config file.

Every capacity and length ceiling used by the store, the classifier gate and
the extractor lives on ``MemoryConfig`` so callers never hard-code limits.
"""

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

from ticketmemory.annotations import Category
from ticketmemory.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

# Default configuration values
CONFIG_FILENAME = "ticketmemory.json"
DB_FILENAME = "memory.db"
STATE_DIRNAME = ".claude"
ENV_PREFIX = "TICKETMEMORY_"
DEBUG_ENV = "TICKETMEMORY_DEBUG"

TICKET_POLICIES = ("branch", "pattern")


def state_dir() -> Path:
    """Return the per-user state directory (``~/.claude``)."""
    try:
        return Path.home() / STATE_DIRNAME
    except RuntimeError as e:
        raise StorageUnavailableError(f"Cannot resolve home directory: {e}") from e


def debug_enabled() -> bool:
    """Check whether the opt-in debug channel is switched on."""
    return bool(os.environ.get(DEBUG_ENV))


@dataclass(frozen=True)
class MemoryConfig:
    """Ticket memory policy."""

    # Per-category capacities
    max_decisions: int = 20
    max_implementations: int = 50
    max_patterns: int = 30
    max_state: int = 20
    max_next: int = 20

    # Text ceilings
    max_text_bytes: int = 100 * 1024
    max_directive_length: int = 200
    max_line_length: int = 150
    max_code_length: int = 100
    max_error_message_length: int = 200
    max_diff_patterns: int = 15

    # Retention and reporting windows
    retention_days: int = 30
    recent_days: int = 7
    recent_sessions: int = 5

    # "branch" uses the branch name verbatim, "pattern" narrows it to an issue key
    ticket_policy: str = "branch"
    completion_marker: str = "[COMPLETE]"
    db_path: Optional[Path] = None

    def capacity_for(self, category: Category) -> int:
        """Get the capacity ceiling for a category."""
        return {
            Category.DECISION: self.max_decisions,
            Category.IMPLEMENTATION: self.max_implementations,
            Category.PATTERN: self.max_patterns,
            Category.STATE: self.max_state,
            Category.NEXT: self.max_next,
        }[category]

    def resolve_db_path(self) -> Path:
        """Database location, defaulting to ``~/.claude/memory.db``."""
        if self.db_path is not None:
            return Path(self.db_path)
        return state_dir() / DB_FILENAME

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "MemoryConfig":
        """
        Load configuration from multiple sources in precedence order:
        1. Environment variables (TICKETMEMORY_<FIELD>)
        2. Config file (~/.claude/ticketmemory.json or TICKETMEMORY_CONFIG)
        3. Default values
        """
        values: dict[str, Any] = {}

        if config_path is None and os.environ.get(f"{ENV_PREFIX}CONFIG"):
            config_path = Path(os.environ[f"{ENV_PREFIX}CONFIG"])
        if config_path is None:
            try:
                config_path = state_dir() / CONFIG_FILENAME
            except StorageUnavailableError:
                config_path = None

        if config_path is not None and config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    file_config = json.load(f)
                if isinstance(file_config, dict):
                    values.update(file_config)
                else:
                    logger.debug("Ignoring config file %s: expected a JSON object", config_path)
            except (OSError, json.JSONDecodeError) as e:
                logger.debug("Failed to load config file %s: %s", config_path, e)

        for f in fields(cls):
            env_value = os.environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if env_value:
                values[f.name] = env_value

        return cls.from_mapping(values)

    @classmethod
    def from_mapping(cls, values: dict[str, Any]) -> "MemoryConfig":
        """Build a config from loosely typed values, skipping invalid entries."""
        config = cls()
        updates: dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in values or values[f.name] in (None, ""):
                continue
            raw = values[f.name]
            default = getattr(config, f.name)
            try:
                if f.name == "db_path":
                    updates[f.name] = Path(raw).expanduser()
                elif isinstance(default, int):
                    number = int(raw)
                    if number < 0:
                        raise ValueError("must not be negative")
                    updates[f.name] = number
                else:
                    updates[f.name] = str(raw)
            except (TypeError, ValueError) as e:
                logger.debug("Ignoring invalid config value %s=%r: %s", f.name, raw, e)

        policy = updates.get("ticket_policy")
        if policy is not None and policy not in TICKET_POLICIES:
            logger.debug("Unknown ticket policy %r, keeping %r", policy, config.ticket_policy)
            del updates["ticket_policy"]

        return replace(config, **updates)
