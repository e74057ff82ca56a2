"""
ProposalPilot Test Configuration and Fixtures
Shared pytest fixtures for all test modules.
"""
from decimal import Decimal
from typing import Any, Callable

import pytest

from proposalpilot.schemas.budgets import BudgetCategory, BudgetItem, BudgetRuleSet


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_item() -> Callable[..., BudgetItem]:
    """Factory for budget items."""
    counter = {"n": 0}

    def _make_item(quantity: int = 1, unit_cost: Any = "0", **kwargs: Any) -> BudgetItem:
        counter["n"] += 1
        kwargs.setdefault("id", f"item-{counter['n']}")
        kwargs.setdefault("description", f"Line item {counter['n']}")
        return BudgetItem(quantity=quantity, unit_cost=Decimal(str(unit_cost)), **kwargs)

    return _make_item


@pytest.fixture
def make_category() -> Callable[..., BudgetCategory]:
    """Factory for budget categories."""

    def _make_category(id: str, name: str = None, items: list = None, **kwargs: Any) -> BudgetCategory:
        return BudgetCategory(id=id, name=name or id.title(), items=items or [], **kwargs)

    return _make_category


# =============================================================================
# Budget Fixtures
# =============================================================================


@pytest.fixture
def capped_rules() -> BudgetRuleSet:
    """10% indirect capped at $5,000 with a $100,000 total limit."""
    return BudgetRuleSet(
        indirect_cost_rate=Decimal("10"),
        max_indirect_cost=Decimal("5000"),
        total_budget_limit=Decimal("100000"),
    )


@pytest.fixture
def personnel_category(make_item, make_category) -> BudgetCategory:
    """Personnel category with two people at $40,000."""
    return make_category(
        "personnel",
        "Personnel",
        items=[make_item(quantity=2, unit_cost=40000, id="pi-salary", description="PI salary")],
    )


@pytest.fixture
def standard_categories(make_item, make_category) -> list[BudgetCategory]:
    """Personnel, travel and a required, empty equipment category."""
    return [
        make_category(
            "personnel",
            "Personnel",
            required=True,
            items=[make_item(quantity=1, unit_cost=60000, id="pi"), make_item(quantity=2, unit_cost=30000, id="grad")],
        ),
        make_category("travel", "Travel", items=[make_item(quantity=3, unit_cost="1500.50", id="conf")]),
        make_category("equipment", "Equipment", required=True),
    ]
