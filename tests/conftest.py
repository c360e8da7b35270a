"""Pytest configuration and shared fixtures."""
from __future__ import annotations

from typing import Callable

import pytest

from smartctl_tap.invoker import ToolResult


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "windows: mark test as Windows-specific"
    )
    config.addinivalue_line(
        "markers", "linux: mark test as Linux-specific"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )


class FakeInvoker:
    """Stands in for ToolInvoker; answers each call through a handler."""

    def __init__(self, handler: Callable[[list[str]], ToolResult], executable: str = "smartctl") -> None:
        self.executable = executable
        self.handler = handler
        self.calls: list[list[str]] = []

    def run(self, args: list[str], timeout: float) -> ToolResult:
        self.calls.append(list(args))
        return self.handler(list(args))


def ok(stdout: str = "", exit_code: int = 0, stderr: str = "") -> ToolResult:
    return ToolResult(exit_code=exit_code, stdout=stdout, stderr=stderr)


@pytest.fixture
def fake_invoker():
    """Build a FakeInvoker from a handler function."""
    def factory(handler: Callable[[list[str]], ToolResult]) -> FakeInvoker:
        return FakeInvoker(handler)
    return factory
