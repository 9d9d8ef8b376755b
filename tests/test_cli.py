"""
Tests for the Command Line Tools
================================

Tests for ticketmemory/cli/memory_cli.py and ticketmemory/cli/query_cli.py
"""

import io
import json
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from ticketmemory import output
from ticketmemory.cli import memory_cli, query_cli
from ticketmemory.errors import StorageUnavailableError
from ticketmemory.git import DiffStats


@pytest.fixture(autouse=True)
def isolated_db(monkeypatch):
    """Point both tools at a throwaway database and config."""
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setenv("TICKETMEMORY_DB_PATH", str(Path(tmpdir) / "memory.db"))
        monkeypatch.setenv("TICKETMEMORY_CONFIG", str(Path(tmpdir) / "missing.json"))
        monkeypatch.delenv("TICKETMEMORY_TICKET_POLICY", raising=False)
        output.use_stderr(False)
        yield Path(tmpdir)
        output.use_stderr(False)


@pytest.fixture
def on_branch():
    """Patch the git collaborator to report a branch and an empty diff."""

    started = []

    def factory(branch: str, diff: str = ""):
        patches = [
            patch("ticketmemory.git.current_branch", return_value=branch),
            patch("ticketmemory.git.modified_files", return_value=DiffStats(files=["auth.go"])),
            patch("ticketmemory.git.head_commit", return_value="abc123"),
            patch("ticketmemory.git.session_diff", return_value=diff),
            patch("ticketmemory.git.staged_or_unstaged_diff", return_value=diff),
        ]
        for p in patches:
            p.start()
            started.append(p)

    yield factory
    for p in started:
        p.stop()


def run_save(monkeypatch, payload) -> int:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    monkeypatch.setattr("sys.stdin", io.StringIO(text))
    return memory_cli.main(["save"])


class TestHookCommands:
    """Tests for load, save, cleanup and extract-ticket."""

    def test_extract_ticket(self, capsys):
        assert memory_cli.main(["extract-ticket", "origin/feature-auth"]) == 0
        assert capsys.readouterr().out == "feature-auth"

    def test_save_then_load(self, monkeypatch, capsys, on_branch):
        on_branch("feature-auth")
        message = "Remember: always validate input before saving.\nTODO: add rate limiting"

        assert run_save(monkeypatch, {"session_id": "s1", "last_human_message": message}) == 0
        assert "Context saved for ticket: feature-auth" in capsys.readouterr().out

        assert memory_cli.main(["load"]) == 0
        out = capsys.readouterr().out
        assert "Loading context for feature-auth" in out
        assert "always validate input before saving." in out
        assert "TODO: add rate limiting" in out

    def test_save_with_tiny_text_limit(self, monkeypatch, capsys, on_branch):
        on_branch("feature-auth")
        monkeypatch.setenv("TICKETMEMORY_MAX_TEXT_BYTES", "40")
        message = "Remember: always validate every single input before saving anything"

        assert run_save(monkeypatch, {"last_human_message": message}) == 0
        assert "Context saved for ticket: feature-auth" in capsys.readouterr().out

    def test_save_with_malformed_input(self, monkeypatch, capsys, on_branch):
        on_branch("feature-auth")
        assert run_save(monkeypatch, "{not json") == 0
        assert "Failed to save context" in capsys.readouterr().out

    def test_load_on_shared_branch(self, capsys, on_branch):
        on_branch("main")
        assert memory_cli.main(["load"]) == 0
        assert "No ticket found in branch name" in capsys.readouterr().out

    def test_save_harvests_diff_patterns(self, monkeypatch, capsys, on_branch):
        on_branch("feature-auth", diff="+func HandleLogin() {}\n+func (s *Server) Start() {}\n")
        run_save(monkeypatch, {"session_id": "s1"})

        memory_cli.main(["context", "load", "feature-auth"])
        out = capsys.readouterr().out
        assert "func HandleLogin" in out
        assert "method Start" not in out

    def test_cleanup_invalid_days(self, capsys):
        assert memory_cli.main(["cleanup", "soon"]) == 0
        assert "Invalid number of days" in capsys.readouterr().out

    def test_cleanup(self, capsys):
        assert memory_cli.main(["cleanup", "30"]) == 0
        assert "Deleted 0 session(s)" in capsys.readouterr().out

    def test_storage_unavailable_exits_quietly(self, capsys, on_branch):
        on_branch("feature-auth")
        with patch("ticketmemory.cli.memory_cli.init_db", side_effect=StorageUnavailableError("no home")):
            assert memory_cli.main(["load"]) == 0
        assert capsys.readouterr().out == ""

    def test_bad_arguments_exit_zero(self):
        with pytest.raises(SystemExit) as exc:
            memory_cli.main(["context", "mark-complete"])
        assert exc.value.code == 0

    def test_no_command(self):
        assert memory_cli.main([]) == 0


class TestContextCommands:
    """Tests for the context subcommands."""

    def seed_steps(self, count=5):
        for i in range(1, count + 1):
            memory_cli.main(["context", "save", "next", "T-1", f"step {i}"])

    def test_save_with_alias_and_list(self, capsys):
        assert memory_cli.main(["context", "save", "todos", "T-1", "write", "docs"]) == 0
        assert "Context saved for T-1 (next)" in capsys.readouterr().out

        memory_cli.main(["context", "list"])
        assert "T-1" in capsys.readouterr().out

    def test_save_invalid_category(self, capsys):
        assert memory_cli.main(["context", "save", "bogus", "T-1", "text"]) == 0
        assert "Invalid category: bogus" in capsys.readouterr().out

    def test_save_uses_current_branch(self, capsys, on_branch):
        on_branch("feature-auth")
        memory_cli.main(["context", "save", "decision", "Use Redis because it is fast"])
        assert "Context saved for feature-auth (decision)" in capsys.readouterr().out

    def test_add_is_gated(self, capsys):
        memory_cli.main(["context", "add", "T-1", "fixed", "typo"])
        assert "Not important enough" in capsys.readouterr().out

        memory_cli.main(["context", "add", "T-1", "Decided to use Redis because it is fast"])
        assert "Context saved for T-1 (decision)" in capsys.readouterr().out

    def test_add_to_default_ticket(self, capsys):
        assert memory_cli.main(["context", "add", "default", "TODO: x"]) == 0
        assert "No ticket" in capsys.readouterr().out

    def test_requirements(self, capsys):
        memory_cli.main(["context", "requirements", "T-1", "Support", "OAuth"])
        memory_cli.main(["context", "load", "T-1"])
        assert "Support OAuth" in capsys.readouterr().out

    def test_load_missing(self, capsys):
        memory_cli.main(["context", "load", "nothing"])
        assert "No context found for nothing" in capsys.readouterr().out

    def test_remove_positions(self, capsys):
        self.seed_steps()
        capsys.readouterr()

        assert memory_cli.main(["context", "remove", "next", "T-1", "2,4"]) == 0
        assert "Removed 2 item(s)" in capsys.readouterr().out

        memory_cli.main(["context", "load", "T-1"])
        out = capsys.readouterr().out
        assert "step 1" in out and "step 3" in out and "step 5" in out
        assert "step 2" not in out and "step 4" not in out

    def test_remove_interactive_cancel(self, capsys):
        self.seed_steps(2)
        with patch("ticketmemory.cli.memory_cli.prompt", return_value="cancel"):
            memory_cli.main(["context", "remove", "next", "T-1"])
        assert "Cancelled." in capsys.readouterr().out

    def test_remove_invalid_selector(self, capsys):
        self.seed_steps(2)
        with patch("ticketmemory.cli.memory_cli.prompt", return_value="two"):
            memory_cli.main(["context", "remove", "next", "T-1"])
        assert "Invalid number 'two'" in capsys.readouterr().out

    def test_clear_requires_confirmation(self, capsys):
        self.seed_steps(1)
        with patch("ticketmemory.cli.memory_cli.prompt", return_value="no"):
            memory_cli.main(["context", "clear", "T-1"])
        assert "Cancelled." in capsys.readouterr().out

        with patch("ticketmemory.cli.memory_cli.prompt", return_value="YES"):
            memory_cli.main(["context", "clear", "T-1"])
        assert "Context cleared for T-1" in capsys.readouterr().out

    def test_remove_all_requires_exact_phrase(self, capsys):
        self.seed_steps(1)
        with patch("ticketmemory.cli.memory_cli.prompt", return_value="delete everything"):
            memory_cli.main(["context", "remove", "all"])
        assert "Cancelled." in capsys.readouterr().out

        with patch("ticketmemory.cli.memory_cli.prompt", return_value="DELETE EVERYTHING"):
            memory_cli.main(["context", "remove", "all"])
        assert "All memory data has been deleted" in capsys.readouterr().out

        memory_cli.main(["context", "load", "T-1"])
        assert "No context found for T-1" in capsys.readouterr().out

    def test_mark_complete(self, capsys):
        self.seed_steps(2)
        capsys.readouterr()

        memory_cli.main(["context", "mark-complete", "T-1", "2"])
        assert "Marked next step #2 complete" in capsys.readouterr().out

        memory_cli.main(["context", "mark-complete", "T-1", "2"])
        assert "already complete" in capsys.readouterr().out

        memory_cli.main(["context", "mark-complete", "T-1", "9"])
        assert "#9 not found (only 2 exist)" in capsys.readouterr().out

        memory_cli.main(["context", "mark-complete", "T-1", "abc"])
        assert "Invalid TODO number 'abc'" in capsys.readouterr().out

    def test_sync_git(self, capsys, on_branch):
        on_branch("feature-auth", diff='+type Store interface {\n+\trouter.HandleFunc("/api/users", h)\n')
        memory_cli.main(["context", "sync-git"])
        assert "Synced 2 code pattern(s)" in capsys.readouterr().out

        memory_cli.main(["context", "sync-git"])
        assert "No new code patterns" in capsys.readouterr().out


class TestQueryCli:
    """Tests for the read-only query tool."""

    def seed(self):
        memory_cli.main(["context", "save", "next", "T-1", "Blocked by the identity team"])
        memory_cli.main(["context", "save", "decision", "T-2", "Decided to use JWT"])

    def test_blockers(self, capsys):
        self.seed()
        capsys.readouterr()

        assert query_cli.main(["blockers"]) == 0
        err = capsys.readouterr().err
        assert "Blocked by the identity team" in err
        assert "[T-1]" in err

    def test_directives_and_all(self, capsys):
        self.seed()
        capsys.readouterr()

        assert query_cli.main(["directives"]) == 0
        assert "Decided to use JWT" in capsys.readouterr().err

        assert query_cli.main(["all"]) == 0
        err = capsys.readouterr().err
        assert "T-1" in err and "T-2" in err

    def test_recent(self, capsys):
        self.seed()
        capsys.readouterr()
        assert query_cli.main(["recent"]) == 0
        assert "T-2" in capsys.readouterr().err

    def test_empty_results(self, capsys):
        assert query_cli.main(["todos"]) == 0
        assert "No TODOs found." in capsys.readouterr().err

    def test_unknown_ticket_exits_one(self, capsys):
        self.seed()
        assert query_cli.main(["blockers", "--ticket", "nope"]) == 1
        assert "No context found for nope" in capsys.readouterr().err

    def test_unknown_command_exits_one(self):
        with pytest.raises(SystemExit) as exc:
            query_cli.main(["bogus"])
        assert exc.value.code == 1
