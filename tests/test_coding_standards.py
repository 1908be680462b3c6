"""
Tests that enforce coding standards.

These tests verify that the library follows our conventions:
- imports are "import X as _x" (external) or "import X as x" (internal)
- no bare "except:" clauses
- library modules log through a module logger, never print()
"""

import ast as _ast
import pathlib as _pathlib

import pytest as _pytest

SRC_DIR = _pathlib.Path(__file__).parent.parent / "src" / "kvconfig"
TESTS_DIR = _pathlib.Path(__file__).parent.parent / "tests"
CLI_DIR = SRC_DIR / "cli"


def _python_files(directory: _pathlib.Path) -> list[_pathlib.Path]:
    return sorted(directory.rglob("*.py"))


def _from_imports(source_text: str) -> list[tuple[int, str]]:
    """
    Find 'from X import Y' statements outside TYPE_CHECKING blocks.

    Returns list of (line_number, statement) tuples. 'from __future__'
    imports are allowed.
    """
    tree = _ast.parse(source_text)
    allowed: set[int] = set()
    for node in _ast.walk(tree):
        if isinstance(node, _ast.If) and "TYPE_CHECKING" in _ast.unparse(node.test):
            for child in _ast.walk(node):
                allowed.add(id(child))

    found: list[tuple[int, str]] = []
    for node in _ast.walk(tree):
        if not isinstance(node, _ast.ImportFrom) or id(node) in allowed:
            continue
        if node.module == "__future__":
            continue
        found.append((node.lineno, _ast.unparse(node)))
    return sorted(found)


def _report(violations: list[str], advice: str) -> None:
    if violations:
        _pytest.fail("\n".join(f"  {v}" for v in violations) + f"\n\n{advice}")


class TestImportStyle:
    """Tests for import style compliance."""

    def test_src_no_from_imports(self) -> None:
        """Source files (other than __init__.py re-exports) use plain imports."""
        violations = [
            f"{path}:{line}: {statement}"
            for path in _python_files(SRC_DIR)
            if path.name != "__init__.py"
            for line, statement in _from_imports(path.read_text(encoding="utf-8"))
        ]
        _report(violations, "Use 'import X as _x' (external) or 'import X as x' (internal).")

    def test_tests_no_from_imports(self) -> None:
        violations = [
            f"{path}:{line}: {statement}"
            for path in _python_files(TESTS_DIR)
            for line, statement in _from_imports(path.read_text(encoding="utf-8"))
        ]
        _report(violations, "Use 'import X as _x' (external) or 'import X as x' (internal).")


class TestErrorHandlingStyle:
    """Tests for exception handling and logging conventions."""

    def test_no_bare_except(self) -> None:
        violations = [
            f"{path}:{node.lineno}"
            for path in _python_files(SRC_DIR)
            for node in _ast.walk(_ast.parse(path.read_text(encoding="utf-8")))
            if isinstance(node, _ast.ExceptHandler) and node.type is None
        ]
        _report(violations, "Catch a specific exception type.")

    def test_library_does_not_print(self) -> None:
        violations = [
            f"{path}:{node.lineno}"
            for path in _python_files(SRC_DIR)
            if CLI_DIR not in path.parents
            for node in _ast.walk(_ast.parse(path.read_text(encoding="utf-8")))
            if isinstance(node, _ast.Call)
            and isinstance(node.func, _ast.Name)
            and node.func.id == "print"
        ]
        _report(violations, "Log through the module's _logger instead.")


class TestFromImportDetection:
    """Tests for the import detection logic itself."""

    def test_detects_from_import(self) -> None:
        assert _from_imports("from pathlib import Path") == [(1, "from pathlib import Path")]

    def test_allows_future_imports(self) -> None:
        assert _from_imports("from __future__ import annotations") == []

    def test_ignores_type_checking_block(self) -> None:
        content = """
import typing as _typing

if _typing.TYPE_CHECKING:
    from some_module import SomeType

def foo():
    pass
"""
        assert _from_imports(content) == []

    def test_detects_import_after_type_checking(self) -> None:
        content = """
import typing as _typing

if _typing.TYPE_CHECKING:
    from allowed import Type

from forbidden import Other
"""
        assert _from_imports(content) == [(7, "from forbidden import Other")]
