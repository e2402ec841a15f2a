"""Lightweight repository map for prompt context.

Parses Python sources with ``ast`` and lists top-level public classes and
functions (with line ranges) per file, plus the symbols whose names match
keywords from the task description. Purely additive: any failure yields no
context.
"""

import ast
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

REPO_MAP_MAX_LINES = 200
MAX_RELEVANT_SYMBOLS = 20
MAX_FILES = 2000

PRIORITY_DIRS = ("src/", "lib/", "app/", "server/", "packages/")
SKIP_DIRS = {
    ".git", ".hg", ".venv", "venv", "env", "node_modules", "__pycache__",
    "build", "dist", ".tox", ".mypy_cache", ".pytest_cache", ".ruff_cache",
}

STOP_WORDS = {
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "is", "it", "be", "as", "was", "were",
    "are", "been", "has", "have", "had", "do", "does", "did", "will",
    "would", "could", "should", "may", "might", "shall", "can", "not",
    "this", "that", "these", "those", "if", "then", "else", "when",
    "up", "out", "so", "no", "we", "us", "our", "my", "me", "i",
    "add", "fix", "update", "change", "make", "use", "create", "new",
    "need", "want", "get", "set", "all", "each", "any", "into",
    "also", "about", "more", "some", "only", "just", "than", "such",
}


class Indexer(Protocol):
    def generate_context(self, workspace_path: str, description: str = "") -> str | None: ...


@dataclass
class Symbol:
    name: str
    kind: str
    start_line: int
    end_line: int
    children: list["Symbol"] = field(default_factory=list)

    def label(self) -> str:
        return f"{self.kind} {self.name} [{self.start_line}-{self.end_line}]"


def _is_public(name: str) -> bool:
    return not name.startswith("_")


def extract_symbols(source: str) -> list[Symbol]:
    """Top-level public classes and functions of a module, with public methods."""
    tree = ast.parse(source)
    symbols = []
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and _is_public(node.name):
            symbols.append(Symbol(node.name, "def", node.lineno, node.end_lineno or node.lineno))
        elif isinstance(node, ast.ClassDef) and _is_public(node.name):
            methods = [
                Symbol(child.name, "def", child.lineno, child.end_lineno or child.lineno)
                for child in node.body
                if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef)) and _is_public(child.name)
            ]
            symbols.append(
                Symbol(node.name, "class", node.lineno, node.end_lineno or node.lineno, methods)
            )
    return symbols


def file_priority(rel_path: str) -> int:
    """Lower is listed first: source dirs, then everything else, then tests."""
    parts = rel_path.split("/")
    name = parts[-1]
    if "tests" in parts[:-1] or "test" in parts[:-1] or name.startswith("test_") or name.endswith("_test.py"):
        return 3
    if rel_path.startswith(PRIORITY_DIRS):
        return 1
    return 2


def tokenize_description(description: str) -> list[str]:
    """Keywords for symbol search: stop words dropped, camelCase and snake_case split."""
    tokens: dict[str, None] = {}
    for raw in re.split(r"[^a-zA-Z0-9_]+", description):
        if not raw:
            continue
        lower = raw.lower().strip("_")
        if len(lower) < 3 or lower in STOP_WORDS:
            continue
        tokens[lower] = None
        pieces = re.split(r"_+|(?<=[a-z0-9])(?=[A-Z])", raw)
        for piece in pieces:
            piece_lower = piece.lower()
            if len(piece_lower) >= 3 and piece_lower not in STOP_WORDS:
                tokens[piece_lower] = None
    return list(tokens)


def _iter_python_files(root: Path):
    count = 0
    for path in sorted(root.rglob("*.py")):
        rel_parts = path.relative_to(root).parts
        if any(part in SKIP_DIRS or part.startswith(".") for part in rel_parts[:-1]):
            continue
        yield path
        count += 1
        if count >= MAX_FILES:
            return


class RepoMapIndexer:
    """Builds prompt context from the Python sources of a workspace."""

    def __init__(self, max_lines: int = REPO_MAP_MAX_LINES):
        self.max_lines = max_lines

    def index(self, workspace_path: str | Path) -> dict[str, list[Symbol]]:
        root = Path(workspace_path)
        index = {}
        for path in _iter_python_files(root):
            try:
                symbols = extract_symbols(path.read_text(encoding="utf-8", errors="replace"))
            except (SyntaxError, ValueError, OSError):
                continue
            if symbols:
                index[path.relative_to(root).as_posix()] = symbols
        return index

    def render_repo_map(self, index: dict[str, list[Symbol]]) -> str | None:
        if not index:
            return None
        files = sorted(index, key=lambda p: (file_priority(p), p))

        groups: dict[str, list[str]] = {}
        for rel_path in files:
            directory = rel_path.rsplit("/", 1)[0] if "/" in rel_path else "."
            groups.setdefault(directory, []).append(rel_path)

        lines: list[str] = []
        truncated = False
        for directory, paths in groups.items():
            if len(lines) >= self.max_lines:
                truncated = True
                break
            lines.append(f"{directory}/")
            for rel_path in paths:
                if len(lines) >= self.max_lines:
                    truncated = True
                    break
                rendered = []
                for sym in index[rel_path]:
                    if sym.children:
                        methods = ", ".join(c.label()[len("def "):] for c in sym.children)
                        rendered.append(f"{sym.label()} {{ {methods} }}")
                    else:
                        rendered.append(sym.label())
                lines.append(f"  {rel_path.rsplit('/', 1)[-1]}: {', '.join(rendered)}")

        if truncated:
            lines.append(f"  ... truncated ({len(files)} files total)")
        return "\n".join(lines)

    def find_relevant(self, index: dict[str, list[Symbol]], description: str) -> str | None:
        keywords = tokenize_description(description)
        if not keywords:
            return None

        found: dict[str, list[Symbol]] = {}
        seen: set[tuple[str, str, int]] = set()
        total = 0
        for keyword in keywords:
            for rel_path in sorted(index, key=lambda p: (file_priority(p), p)):
                for sym in index[rel_path]:
                    for candidate in [sym] + sym.children:
                        if total >= MAX_RELEVANT_SYMBOLS:
                            break
                        key = (rel_path, candidate.name, candidate.start_line)
                        if keyword in candidate.name.lower() and key not in seen:
                            seen.add(key)
                            found.setdefault(rel_path, []).append(candidate)
                            total += 1

        if not found:
            return None
        return "\n".join(
            f"{rel_path}: {', '.join(s.label() for s in symbols)}"
            for rel_path, symbols in found.items()
        )

    def generate_context(self, workspace_path: str, description: str = "") -> str | None:
        index = self.index(workspace_path)
        repo_map = self.render_repo_map(index)
        relevant = self.find_relevant(index, description) if description else None

        sections = []
        if repo_map:
            sections.append(
                "## Repository Map\n"
                "Top-level public symbols per file (with line ranges):\n"
                f"```\n{repo_map}\n```"
            )
        if relevant:
            sections.append(
                "## Relevant Symbols\n"
                "Symbols matching keywords from the task description, likely starting points:\n"
                f"```\n{relevant}\n```"
            )
        if not sections:
            return None
        return "\n\n".join(sections)
