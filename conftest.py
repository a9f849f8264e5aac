"""Root conftest.py for lockcycle.

Registers the project's markers and marks tests that replace real
collaborators (unittest.mock objects or the scripted fake device link) with
``uses_mock``, so the suite can be split with ``-m "not uses_mock"``.
"""

from __future__ import annotations

import ast
import inspect
import sys
import textwrap
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from _pytest.config import Config
    from _pytest.nodes import Item


# Allow running the suite from a source checkout without installing
SRC_DIR = Path(__file__).parent / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# Names that indicate a test double is in use
DOUBLE_NAMES = frozenset({
    "MagicMock",
    "Mock",
    "AsyncMock",
    "PropertyMock",
    "create_autospec",
    "patch",
    "FakeDeviceLink",
    "fake_link",
})


def pytest_configure(config: Config) -> None:
    """Register custom markers.

    Args:
        config: pytest configuration object.
    """
    config.addinivalue_line(
        "markers",
        "uses_mock: Test uses mocks or the fake device link (auto-detected)",
    )
    config.addinivalue_line(
        "markers",
        "integration: Test that exercises the full stack end to end",
    )
    config.addinivalue_line(
        "markers",
        "slow: Slow-running test",
    )


class DoubleDetector(ast.NodeVisitor):
    """AST visitor that looks for test doubles in a test function."""

    def __init__(self) -> None:
        self.found = False

    def visit_Name(self, node: ast.Name) -> None:
        if node.id in DOUBLE_NAMES:
            self.found = True
        self.generic_visit(node)

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr in DOUBLE_NAMES:
            self.found = True
        self.generic_visit(node)

    def visit_arg(self, node: ast.arg) -> None:
        if node.arg in DOUBLE_NAMES or "mock" in node.arg.lower():
            self.found = True
        self.generic_visit(node)


def _uses_double(item: Item) -> bool:
    """Return True if the test function body or its fixtures use a double.

    Args:
        item: pytest test item.
    """
    fixture_names = getattr(item, "fixturenames", ())
    if any(name in DOUBLE_NAMES for name in fixture_names):
        return True

    obj = getattr(item, "obj", None)
    if obj is None:
        return False
    try:
        source = inspect.getsource(obj)
    except (OSError, TypeError):
        return False
    try:
        tree = ast.parse(textwrap.dedent(source))
    except SyntaxError:
        return False
    detector = DoubleDetector()
    detector.visit(tree)
    return detector.found


def pytest_collection_modifyitems(config: Config, items: list[Item]) -> None:
    """Mark tests that use test doubles.

    Args:
        config: pytest configuration object.
        items: List of collected test items.
    """
    for item in items:
        if item.get_closest_marker("uses_mock"):
            continue
        if _uses_double(item):
            item.add_marker(pytest.mark.uses_mock)


def pytest_report_header(config: Config) -> list[str]:
    """Add suite info to the pytest header.

    Args:
        config: pytest configuration object.

    Returns:
        List of header lines.
    """
    lines = ["lockcycle test suite"]
    if getattr(config.option, "cov_source", None):
        lines.append("Coverage: enabled")
    return lines
