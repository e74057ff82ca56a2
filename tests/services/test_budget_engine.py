"""
Tests for the budget engine.
Tests item mutations, recomputation after every change and structural errors.
"""
from decimal import Decimal

import pytest

from proposalpilot.core.exceptions import BudgetNotFoundError
from proposalpilot.schemas.budgets import (
    AddItemRequest,
    BudgetRuleSet,
    BudgetSnapshot,
    ReplaceRulesRequest,
    UpdateItemRequest,
    ViolationRule,
)
from proposalpilot.services.budget_engine import BudgetEngine, coerce_quantity, coerce_unit_cost


@pytest.fixture
def engine(standard_categories, capped_rules) -> BudgetEngine:
    """Engine over the standard categories with capped indirect rules."""
    return BudgetEngine(standard_categories, capped_rules, item_id_prefix="item")


@pytest.fixture
def required_engine(make_category) -> BudgetEngine:
    """Engine with a single required, empty personnel category."""
    return BudgetEngine([make_category("personnel", "Personnel", required=True)])


# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    """Tests for building an engine."""

    def test_copies_input_categories(self, standard_categories):
        """Test that the caller's category objects are never mutated."""
        engine = BudgetEngine(standard_categories)
        engine.add_item("travel")

        assert len(standard_categories[1].items) == 1
        assert len(engine.categories[1].items) == 2

    def test_accepts_camel_case_payloads(self):
        """Test building from a saved proposal payload in the UI's field names."""
        engine = BudgetEngine(
            [
                {
                    "id": "personnel",
                    "name": "Personnel",
                    "required": True,
                    "maxPercentage": 80,
                    "items": [{"id": "pi", "description": "PI", "quantity": 1, "unitCost": "95000"}],
                }
            ],
            {"indirectCostRate": 50, "maxIndirectCost": 10000},
        )

        totals = engine.totals
        assert totals.direct_costs == Decimal("95000")
        assert totals.indirect_costs == Decimal("10000")

    def test_duplicate_category_ids_rejected(self, make_category):
        """Test that duplicate category ids are rejected."""
        with pytest.raises(ValueError):
            BudgetEngine([make_category("travel"), make_category("travel")])

    def test_no_rules_defaults_to_empty_rule_set(self, standard_categories):
        """Test that an engine without rules has no indirect costs."""
        engine = BudgetEngine(standard_categories)
        assert engine.rules == BudgetRuleSet()
        assert engine.totals.indirect_costs == Decimal("0")


# =============================================================================
# Add Item
# =============================================================================


class TestAddItem:
    """Tests for adding items."""

    def test_appends_blank_item(self, engine):
        """Test the new item is appended with quantity 1 and unit cost 0."""
        snapshot = engine.add_item("travel")

        travel = snapshot.categories[1]
        assert len(travel.items) == 2
        new_item = travel.items[-1]
        assert new_item.quantity == 1
        assert new_item.unit_cost == Decimal("0")
        assert new_item.description == ""
        assert new_item.id.startswith("item-")

    def test_generated_ids_are_unique(self, engine):
        """Test repeated adds never reuse an id."""
        for _ in range(20):
            engine.add_item("equipment")
        ids = [item.id for item in engine.categories[2].items]
        assert len(ids) == len(set(ids)) == 20

    def test_unknown_category(self, engine):
        """Test adding to an unknown category raises and leaves state unchanged."""
        before = engine.snapshot()
        with pytest.raises(BudgetNotFoundError) as exc_info:
            engine.add_item("nonexistent")

        assert str(exc_info.value) == "Budget category not found: nonexistent"
        assert exc_info.value.id == "nonexistent"
        assert engine.snapshot() == before

    def test_not_found_is_lookup_error(self, engine):
        """Test structural errors can be caught as LookupError."""
        with pytest.raises(LookupError):
            engine.add_item("nonexistent")


# =============================================================================
# Remove Item
# =============================================================================


class TestRemoveItem:
    """Tests for removing items."""

    def test_removes_item_and_recomputes(self, engine):
        """Test removing an item updates totals."""
        snapshot = engine.remove_item("personnel", "grad")

        assert [item.id for item in snapshot.categories[0].items] == ["pi"]
        assert snapshot.totals.category_totals["personnel"] == Decimal("60000")

    def test_duplicate_removal_is_noop(self, engine):
        """Test removing an already-removed item does not raise."""
        engine.remove_item("personnel", "grad")
        snapshot = engine.remove_item("personnel", "grad")
        assert [item.id for item in snapshot.categories[0].items] == ["pi"]

    def test_unknown_category_raises(self, engine):
        """Test removal from an unknown category is a structural error."""
        with pytest.raises(BudgetNotFoundError):
            engine.remove_item("nonexistent", "pi")

    def test_emptying_required_category_flags_immediately(self, engine):
        """Test removing every item from a required category yields its violation."""
        engine.remove_item("personnel", "pi")
        snapshot = engine.remove_item("personnel", "grad")

        required = [v for v in snapshot.violations if v.rule == ViolationRule.REQUIRED_CATEGORY]
        assert [v.category_id for v in required] == ["personnel", "equipment"]


# =============================================================================
# Update Item
# =============================================================================


class TestUpdateItem:
    """Tests for updating item fields."""

    def test_update_quantity(self, engine):
        """Test quantity updates flow through to totals."""
        snapshot = engine.update_item("personnel", "grad", "quantity", 3)
        assert snapshot.totals.category_totals["personnel"] == Decimal("150000")

    def test_update_unit_cost_camel_case(self, engine):
        """Test the UI's unitCost field name is accepted."""
        snapshot = engine.update_item("travel", "conf", "unitCost", "2000")
        assert snapshot.totals.category_totals["travel"] == Decimal("6000")

    def test_update_description(self, engine):
        """Test description updates."""
        snapshot = engine.update_item("travel", "conf", "description", "AAAS annual meeting")
        assert snapshot.categories[1].items[0].description == "AAAS annual meeting"

    @pytest.mark.parametrize(
        "value", ["abc", "", None, -5, "-1", "nan", "Infinity", True, "1e1000000", "1e-1000000"]
    )
    def test_invalid_numeric_input_clamped_to_zero(self, engine, value):
        """Test malformed or negative numbers degrade to zero."""
        snapshot = engine.update_item("travel", "conf", "unit_cost", value)
        assert snapshot.categories[1].items[0].unit_cost == Decimal("0")
        assert snapshot.totals.category_totals["travel"] == Decimal("0")

    @pytest.mark.parametrize("field", ["unitCost", "quantity"])
    def test_huge_magnitude_keeps_session_usable(self, engine, field):
        """Test an out-of-range exponent is clamped and later mutations still work."""
        snapshot = engine.update_item("travel", "conf", field, "1e1000000")
        item = snapshot.categories[1].items[0]
        assert getattr(item, "unit_cost" if field == "unitCost" else "quantity") == 0
        assert snapshot.totals.category_totals["travel"] == Decimal("0")

        engine.update_item("travel", "conf", "quantity", 2)
        snapshot = engine.update_item("travel", "conf", "unit_cost", "250")
        assert snapshot.totals.category_totals["travel"] == Decimal("500")
        assert engine.snapshot() == snapshot

    def test_fractional_quantity_truncated(self, engine):
        """Test a fractional quantity is truncated toward zero."""
        snapshot = engine.update_item("personnel", "grad", "quantity", "2.7")
        assert snapshot.categories[0].items[1].quantity == 2

    def test_unknown_item(self, engine):
        """Test updating an unknown item raises without changing state."""
        before = engine.snapshot()
        with pytest.raises(BudgetNotFoundError) as exc_info:
            engine.update_item("personnel", "ghost", "quantity", 4)
        assert str(exc_info.value) == "Budget item not found: ghost"
        assert engine.snapshot() == before

    def test_unknown_field(self, engine):
        """Test updating a non-editable field raises."""
        with pytest.raises(BudgetNotFoundError):
            engine.update_item("personnel", "pi", "id", "renamed")
        assert engine.categories[0].items[0].id == "pi"


# =============================================================================
# Rules and Dispatch
# =============================================================================


class TestRulesAndDispatch:
    """Tests for replacing rules and dispatching mutation requests."""

    def test_set_rules_recomputes(self, engine):
        """Test replacing the rule set changes derived totals."""
        snapshot = engine.set_rules(BudgetRuleSet(indirect_cost_rate=Decimal("50")))
        assert snapshot.totals.indirect_costs == snapshot.totals.direct_costs / 2

    def test_caller_rule_edits_do_not_leak(self, standard_categories):
        """Test the engine holds its own copy of the rule set's nested limits."""
        rules = BudgetRuleSet(category_limits={"travel": Decimal("100000")})
        engine = BudgetEngine(standard_categories, rules)

        rules.category_limits["travel"] = Decimal("0")
        engine.rules.category_limits["travel"] = Decimal("0")

        violations = engine.snapshot().violations
        assert ViolationRule.CATEGORY_LIMIT not in [v.rule for v in violations]
        assert engine.rules.category_limits["travel"] == Decimal("100000")

    def test_set_rules_copies_rule_set(self, engine):
        """Test rules passed to set_rules are copied."""
        rules = BudgetRuleSet(category_limits={"travel": Decimal("100000")})
        engine.set_rules(rules)
        rules.category_limits["travel"] = Decimal("0")

        assert ViolationRule.CATEGORY_LIMIT not in [v.rule for v in engine.snapshot().violations]

    def test_apply_typed_requests(self, engine):
        """Test typed requests dispatch to the matching operation."""
        engine.apply(AddItemRequest(category_id="equipment"))
        new_id = engine.categories[2].items[0].id
        engine.apply(UpdateItemRequest(category_id="equipment", item_id=new_id, field="unit_cost", value="7500"))
        snapshot = engine.apply(ReplaceRulesRequest(rules=BudgetRuleSet()))

        assert snapshot.totals.category_totals["equipment"] == Decimal("7500")
        assert snapshot.totals.indirect_costs == Decimal("0")

    def test_apply_raw_payload(self, engine):
        """Test raw camelCase payloads are parsed and dispatched."""
        snapshot = engine.apply({"action": "remove_item", "categoryId": "travel", "itemId": "conf"})
        assert snapshot.categories[1].items == []


# =============================================================================
# Snapshots and Notification
# =============================================================================


class TestSnapshots:
    """Tests for the state returned after each mutation."""

    def test_on_change_receives_every_snapshot(self, standard_categories):
        """Test the change callback sees each mutation's snapshot."""
        received = []
        engine = BudgetEngine(standard_categories, on_change=received.append)

        returned = engine.add_item("equipment")
        engine.remove_item("travel", "conf")

        assert len(received) == 2
        assert received[0] == returned
        assert isinstance(received[1], BudgetSnapshot)

    def test_failed_mutation_does_not_notify(self, standard_categories):
        """Test structural errors do not trigger the callback."""
        received = []
        engine = BudgetEngine(standard_categories, on_change=received.append)
        with pytest.raises(BudgetNotFoundError):
            engine.add_item("nonexistent")
        assert received == []

    def test_snapshot_is_detached(self, engine):
        """Test mutating a snapshot does not affect the engine."""
        snapshot = engine.snapshot()
        snapshot.categories[0].items.clear()
        assert len(engine.categories[0].items) == 2

    def test_non_compliant_mutation_still_applies(self, engine):
        """Test a mutation producing violations is still applied."""
        snapshot = engine.update_item("personnel", "pi", "unit_cost", "500000")

        assert snapshot.categories[0].items[0].unit_cost == Decimal("500000")
        assert not snapshot.is_compliant
        assert snapshot.violations[0].rule == ViolationRule.TOTAL_BUDGET_LIMIT

    def test_yearly_totals_and_summary(self, engine):
        """Test per-year totals and proposal summary reflect current state."""
        years = engine.yearly_totals(2)
        assert sum(years) == engine.totals.direct_costs

        summary = engine.to_proposal_budget("Justification")
        assert summary.direct_costs == engine.totals.direct_costs


# =============================================================================
# Required Category Scenario
# =============================================================================


class TestRequiredCategoryScenario:
    """Tests for the required-category lifecycle."""

    def test_empty_required_category(self, required_engine):
        """Test an empty required category yields exactly one violation."""
        violations = required_engine.snapshot().violations
        assert len(violations) == 1
        assert violations[0].category_id == "personnel"

    def test_zero_cost_item_does_not_clear(self, required_engine):
        """Test adding a blank item keeps the violation."""
        snapshot = required_engine.add_item("personnel")
        assert [v.rule for v in snapshot.violations] == [ViolationRule.REQUIRED_CATEGORY]

    def test_nonzero_cost_clears(self, required_engine):
        """Test a unit cost of 1 clears the violation."""
        snapshot = required_engine.add_item("personnel")
        item_id = snapshot.categories[0].items[0].id

        snapshot = required_engine.update_item("personnel", item_id, "unitCost", 1)

        assert snapshot.violations == []
        assert snapshot.is_compliant


class TestCoercion:
    """Tests for numeric input coercion."""

    def test_quantity(self):
        """Test quantity coercion."""
        assert coerce_quantity("4") == 4
        assert coerce_quantity(3.9) == 3
        assert coerce_quantity("-2") == 0
        assert coerce_quantity(" 7 ") == 7
        assert coerce_quantity("1e1000000") == 0

    def test_unit_cost(self):
        """Test unit cost coercion."""
        assert coerce_unit_cost("1500.25") == Decimal("1500.25")
        assert coerce_unit_cost(Decimal("12")) == Decimal("12")
        assert coerce_unit_cost("1e3") == Decimal("1000")
        assert coerce_unit_cost("12 dollars") == Decimal("0")
        assert coerce_unit_cost("1e20") == Decimal("0")
        assert coerce_unit_cost("1e-20") == Decimal("0")
