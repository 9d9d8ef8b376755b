"""
Tests for Message and Diff Extraction
=====================================

Tests for ticketmemory/extraction.py
"""

import pytest

from ticketmemory.config import MemoryConfig
from ticketmemory.extraction import DiffExtractor, DiffPattern, MessageExtractor


@pytest.fixture
def extractor():
    return MessageExtractor(MemoryConfig())


GO_DIFF = """diff --git a/server.go b/server.go
--- a/server.go
+++ b/server.go
@@ -1,3 +1,12 @@
 package server
+// HandleLogin authenticates users
+func HandleLogin(w http.ResponseWriter, r *http.Request) {
+func (s *Server) Start() error {
+type Config struct { // server settings
+type Store interface {
+\trouter.HandleFunc("/api/users", listUsers)
-func Removed() {}
"""

PY_DIFF = """--- a/service.py
+++ b/service.py
@@ -0,0 +1,6 @@
+class UserService:
+    def get_user(self, user_id):  # cached lookup
+    def _helper(self):
"""


class TestMessageExtraction:
    """Tests for MessageExtractor.extract()."""

    def test_directive_and_todo(self, extractor):
        content = extractor.extract(
            "Remember: always validate input before saving.\nTODO: add rate limiting"
        )

        assert content.directives == ["always validate input before saving."]
        assert content.todos == ["TODO: add rate limiting"]
        assert content.implementations == ["TODO: add rate limiting"]
        assert content.error_state is None

    def test_directive_prefixes_are_stripped(self, extractor):
        content = extractor.extract("Note: use UTC everywhere\nNever commit secrets")
        assert content.directives == ["use UTC everywhere", "Never commit secrets"]

    def test_long_directive_is_dropped(self, extractor):
        content = extractor.extract("Remember: " + "x" * 250)
        assert content.directives == []

    def test_code_spans(self, extractor):
        content = extractor.extract("Use `func Foo(x int)` then call `validate()` but not `plain`")
        assert content.code_patterns == ["func Foo(x int)", "validate()"]

    def test_endpoint_implementation(self, extractor):
        content = extractor.extract("Implemented POST /api/login handler")
        assert content.implementations == ["POST /api/login"]

    def test_long_implementation_line_without_endpoint(self, extractor):
        content = extractor.extract("Implemented " + "y" * 200)
        assert content.implementations == []

    def test_error_state(self, extractor):
        content = extractor.extract("Login is broken for admins")
        assert content.error_state == "Login is broken for admins"

    def test_error_state_suppressed_by_specific_item(self, extractor):
        content = extractor.extract("Blocked: tests fail with error")
        assert content.todos == ["Blocked: tests fail with error"]
        assert content.error_state is None

    def test_error_state_suppressed_when_other_lines_extracted(self, extractor):
        content = extractor.extract("Implemented login form\nIt is broken on Safari")
        assert content.implementations == ["Implemented login form"]
        assert content.error_state is None

    def test_error_state_suppressed_for_long_message(self, extractor):
        content = extractor.extract("error " + "z" * 300)
        assert content.error_state is None

    def test_empty_message(self, extractor):
        content = extractor.extract("")
        assert content.is_empty()

    def test_duplicate_lines_collapse(self, extractor):
        content = extractor.extract("TODO: write docs\nTODO: write docs")
        assert content.todos == ["TODO: write docs"]


class TestDiffExtraction:
    """Tests for DiffExtractor."""

    def test_go_signatures(self):
        assert DiffExtractor(limit=15).extract(GO_DIFF) == [
            "func HandleLogin // HandleLogin authenticates users",
            "method Start",
            "type Config // server settings",
            "interface Store",
            "endpoint: /api/users",
        ]

    def test_removed_lines_ignored(self):
        assert not any("Removed" in s for s in DiffExtractor().extract(GO_DIFF))

    def test_python_signatures(self):
        assert DiffExtractor().extract(PY_DIFF) == [
            "class UserService",
            "def get_user # cached lookup",
            "def _helper",
        ]

    def test_private_names_ranked_last(self):
        assert DiffExtractor(limit=2).extract(PY_DIFF) == [
            "class UserService",
            "def get_user # cached lookup",
        ]

    def test_duplicates_collapse(self):
        diff = "+func Repeat() {}\n+func Repeat() {}\n"
        assert DiffExtractor().extract(diff) == ["func Repeat"]

    def test_cap_keeps_public_and_original_order(self):
        lines = [f"+func helper{i}() {{}}" for i in range(20)]
        lines.append("+func Public() {}")

        result = DiffExtractor(limit=15).extract("\n".join(lines))

        assert len(result) == 15
        assert result[-1] == "func Public"
        assert result[:14] == [f"func helper{i}" for i in range(14)]

    def test_versioned_path_literal(self):
        assert DiffExtractor().extract('+    url = "/v2/orders"\n') == ["endpoint: /v2/orders"]

    def test_plain_paths_are_not_endpoints(self):
        assert DiffExtractor().extract('+    path = "/tmp/cache"\n') == []

    def test_pattern_flags(self):
        assert DiffPattern("endpoint: /api/x", True).is_endpoint
        assert not DiffPattern("func X", True).is_endpoint
