"""
Ticket Resolution
=================

Maps a branch name to the ticket identifier that partitions stored
annotations.

Two policies are available and they are not interchangeable:

- ``branch`` (default): the branch name, minus a remote prefix, is the ticket.
- ``pattern``: structured names are narrowed to a captured key
  (``ABC-123``, ``#123``, ``bug-123``, ``feature/<slug>``, ``release/<version>``)
  before falling back to a sanitized form of the branch.

Shared integration branches always resolve to ``DEFAULT_TICKET``, which never
receives annotations.
"""

import re
from typing import Protocol

DEFAULT_TICKET = "default"

REMOTE_PREFIX = re.compile(r"^(origin|upstream)/")
SHARED_BRANCHES = re.compile(r"^(main|master|develop|dev|staging|prod|production|release.*)$")

ISSUE_KEY = re.compile(r"([A-Za-z]+-\d+)")
ISSUE_NUMBER = re.compile(r"#(\d+)")
FEATURE_BRANCH = re.compile(r"^feature/(.+)$")
RELEASE_BRANCH = re.compile(r"^release/(.+)$")
NON_IDENTIFIER = re.compile(r"[^A-Za-z0-9_.-]+")


def strip_remote(branch: str) -> str:
    return REMOTE_PREFIX.sub("", branch.strip())


def is_shared_branch(name: str) -> bool:
    return SHARED_BRANCHES.match(name) is not None


def sanitize(name: str) -> str:
    """Collapse runs of non-identifier characters to one dash and trim."""
    return NON_IDENTIFIER.sub("-", name).strip("-")


class TicketResolver(Protocol):
    def resolve(self, branch: str) -> str:
        ...


class BranchTicketResolver:
    """Uses the prefix-stripped branch name verbatim."""

    def resolve(self, branch: str) -> str:
        name = strip_remote(branch or "")
        if not name or is_shared_branch(name):
            return DEFAULT_TICKET
        return name


class PatternTicketResolver:
    """Narrows branch names to issue-tracker style keys where possible."""

    def resolve(self, branch: str) -> str:
        name = strip_remote(branch or "")
        if not name:
            return DEFAULT_TICKET

        release = RELEASE_BRANCH.match(name)
        if release:
            return f"release-{sanitize(release.group(1))}"

        if is_shared_branch(name):
            return DEFAULT_TICKET

        match = ISSUE_KEY.search(name)
        if match:
            return match.group(1).upper()

        match = ISSUE_NUMBER.search(name)
        if match:
            return match.group(1)

        match = FEATURE_BRANCH.match(name)
        if match:
            return sanitize(match.group(1)) or DEFAULT_TICKET

        return sanitize(name) or DEFAULT_TICKET


def resolver_for(policy: str) -> TicketResolver:
    """Get the resolver for a configured policy name."""
    if policy == "pattern":
        return PatternTicketResolver()
    return BranchTicketResolver()
