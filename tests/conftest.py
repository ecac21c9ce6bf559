"""Pytest configuration and fixtures for probe-budget tests."""

from collections.abc import Callable
from typing import Any

import pytest

from probe_budget.core.budget.config import BudgetContext, _reset_budget_context


@pytest.fixture(autouse=True)
def reset_budget_context(monkeypatch: pytest.MonkeyPatch):
    """Reset the process-wide budget context before and after each test.

    The PROBE_BUDGET variable is cleared so a developer's environment cannot
    change the limits the tests assert against.
    """
    monkeypatch.delenv("PROBE_BUDGET", raising=False)
    _reset_budget_context()
    yield
    _reset_budget_context()


@pytest.fixture
def context() -> BudgetContext:
    """Fresh context with default limits."""
    return BudgetContext()


@pytest.fixture
def make_context() -> Callable[..., BudgetContext]:
    """Factory for contexts with overrides given as keyword arguments."""

    def _make(**overrides: Any) -> BudgetContext:
        return BudgetContext(overrides)

    return _make
