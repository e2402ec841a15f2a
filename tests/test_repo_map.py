"""Tests for the repository map indexer."""

import tempfile
from pathlib import Path

import pytest

from work_engine.core.repo_map import (
    RepoMapIndexer,
    extract_symbols,
    file_priority,
    tokenize_description,
)

AUTH_SOURCE = '''\
import os


class SessionStore:
    def get(self, key):
        return None

    def _evict(self):
        pass


def login_user(name, password):
    return True


def _hash(password):
    return password
'''


@pytest.fixture
def workspace():
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)
        (root / "src" / "app").mkdir(parents=True)
        (root / "src" / "app" / "auth.py").write_text(AUTH_SOURCE)
        (root / "tests").mkdir()
        (root / "tests" / "test_auth.py").write_text("def test_login():\n    pass\n")
        (root / "setup_helpers.py").write_text("def build():\n    pass\n")
        (root / "broken.py").write_text("def oops(:\n")
        (root / ".venv" / "lib").mkdir(parents=True)
        (root / ".venv" / "lib" / "vendored.py").write_text("def vendored():\n    pass\n")
        yield root


class TestExtractSymbols:
    def test_public_symbols_only(self):
        symbols = extract_symbols(AUTH_SOURCE)
        assert [s.name for s in symbols] == ["SessionStore", "login_user"]

        store = symbols[0]
        assert store.kind == "class"
        assert [m.name for m in store.children] == ["get"]
        assert (store.start_line, store.end_line) == (4, 9)

    def test_label(self):
        login = extract_symbols(AUTH_SOURCE)[1]
        assert login.label() == "def login_user [12-13]"


class TestHelpers:
    def test_file_priority(self):
        assert file_priority("src/app/auth.py") == 1
        assert file_priority("setup_helpers.py") == 2
        assert file_priority("tests/test_auth.py") == 3
        assert file_priority("pkg/auth_test.py") == 3

    def test_tokenize(self):
        tokens = tokenize_description("Fix the loginUser flow in session_store")
        assert "loginuser" in tokens
        assert "login" in tokens
        assert "user" in tokens
        assert "session_store" in tokens
        assert "session" in tokens
        assert "store" in tokens
        assert "the" not in tokens
        assert "fix" not in tokens


class TestRepoMapIndexer:
    def test_index_skips_unparseable_and_hidden(self, workspace):
        index = RepoMapIndexer().index(workspace)
        assert set(index) == {"src/app/auth.py", "tests/test_auth.py", "setup_helpers.py"}

    def test_source_dirs_listed_before_tests(self, workspace):
        context = RepoMapIndexer().generate_context(str(workspace))
        assert context.startswith("## Repository Map")
        assert context.index("auth.py") < context.index("setup_helpers.py") < context.index("test_auth.py")
        assert "class SessionStore [4-9] { get [5-6] }" in context
        assert "Relevant Symbols" not in context

    def test_relevant_symbols(self, workspace):
        context = RepoMapIndexer().generate_context(str(workspace), "Fix the login flow for users")
        assert "## Relevant Symbols" in context
        relevant = context.split("## Relevant Symbols", 1)[1]
        assert "src/app/auth.py: def login_user [12-13]" in relevant

    def test_truncates_long_maps(self, workspace):
        context = RepoMapIndexer(max_lines=2).generate_context(str(workspace))
        assert "truncated (3 files total)" in context

    def test_empty_workspace(self):
        with tempfile.TemporaryDirectory() as tmp:
            assert RepoMapIndexer().generate_context(tmp, "anything") is None
