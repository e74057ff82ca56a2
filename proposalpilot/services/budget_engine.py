"""
Budget Engine Service
Composition and compliance engine behind the budget builder.

This service handles:
- Aggregating line items into category and project totals
- Deriving indirect costs and cost share from funder rules
- Evaluating compliance rules in a fixed, deterministic order
- Applying item mutations and returning the recomputed state
"""

import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import structlog

from proposalpilot.core.config import settings
from proposalpilot.core.exceptions import BudgetNotFoundError
from proposalpilot.schemas.budgets import (
    AddItemRequest,
    BudgetCategory,
    BudgetItem,
    BudgetRuleSet,
    BudgetSnapshot,
    BudgetTotals,
    ProposalBudget,
    ProposalBudgetCategory,
    ProposalBudgetLineItem,
    RemoveItemRequest,
    ReplaceRulesRequest,
    UpdateItemRequest,
    Violation,
    ViolationRule,
    ViolationSeverity,
    parse_mutation,
)

logger = structlog.get_logger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Largest decimal exponent accepted for UI input (values up to ~10^15)
MAX_INPUT_EXPONENT = 15

# Accepted field names -> item attribute
EDITABLE_FIELDS = {
    "description": "description",
    "quantity": "quantity",
    "unit_cost": "unit_cost",
    "unitCost": "unit_cost",
}


# =============================================================================
# Input Coercion
# =============================================================================


def _coerce_decimal(value: Any) -> Decimal:
    """Parse a finite, non-negative number of sane magnitude; anything else becomes zero."""
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return ZERO
    if not amount.is_finite() or amount <= ZERO:
        return ZERO
    if not -MAX_INPUT_EXPONENT <= amount.adjusted() <= MAX_INPUT_EXPONENT:
        return ZERO
    return amount


def coerce_quantity(value: Any) -> int:
    """Coerce UI input to a quantity, truncating fractions toward zero."""
    return int(_coerce_decimal(value))


def coerce_unit_cost(value: Any) -> Decimal:
    """Coerce UI input to a unit cost."""
    return _coerce_decimal(value)


def _format_money(amount: Decimal) -> str:
    if amount == amount.to_integral_value():
        return f"{int(amount):,}"
    return f"{amount:,.2f}"


# =============================================================================
# Calculations
# =============================================================================


def compute_totals(categories: Sequence[BudgetCategory], rules: Optional[BudgetRuleSet] = None) -> BudgetTotals:
    """
    Compute budget totals from the category tree.

    Args:
        categories: Categories in declared order
        rules: Funder rule set; no rules means no indirect costs or cost share

    Returns:
        Totals with category totals keyed by category id in declared order
    """
    if rules is None:
        rules = BudgetRuleSet()

    category_totals: Dict[str, Decimal] = {}
    direct_costs = ZERO
    for category in categories:
        category_total = category.total
        category_totals[category.id] = category_total
        direct_costs += category_total

    indirect_costs = ZERO
    if rules.indirect_cost_rate is not None:
        indirect_costs = direct_costs * rules.indirect_cost_rate / HUNDRED
        if rules.max_indirect_cost is not None:
            indirect_costs = min(indirect_costs, rules.max_indirect_cost)

    total_budget = direct_costs + indirect_costs

    cost_share = ZERO
    if rules.cost_share_required:
        cost_share = total_budget * (rules.cost_share_percentage or ZERO) / HUNDRED

    return BudgetTotals(
        direct_costs=direct_costs,
        indirect_costs=indirect_costs,
        cost_share=cost_share,
        total_budget=total_budget,
        category_totals=category_totals,
    )


def validate(
    categories: Sequence[BudgetCategory],
    rules: BudgetRuleSet,
    totals: BudgetTotals,
) -> List[Violation]:
    """
    Evaluate compliance rules against computed totals.

    Checks run in a fixed order and never short-circuit each other:
    total budget limit, then category limits, then required categories.
    Category checks follow the declared category order.

    Args:
        categories: Categories in declared order
        rules: Funder rule set
        totals: Totals computed from ``categories`` and ``rules``

    Returns:
        Ordered list of violations; empty when the budget is compliant
    """
    violations: List[Violation] = []

    limit = rules.total_budget_limit
    if limit is not None and totals.total_budget > limit:
        violations.append(
            Violation(
                rule=ViolationRule.TOTAL_BUDGET_LIMIT,
                message=f"Total budget exceeds limit of ${_format_money(limit)}",
                limit=limit,
                actual=totals.total_budget,
            )
        )

    # Limits naming a category that is not in the tree are ignored
    category_limits = rules.category_limits or {}
    for category in categories:
        category_limit = category_limits.get(category.id)
        if category_limit is None:
            continue
        category_total = totals.category_totals.get(category.id, ZERO)
        if category_total > category_limit:
            violations.append(
                Violation(
                    rule=ViolationRule.CATEGORY_LIMIT,
                    message=f"{category.name} exceeds limit of ${_format_money(category_limit)}",
                    category_id=category.id,
                    limit=category_limit,
                    actual=category_total,
                )
            )

    for category in categories:
        if category.required and totals.category_totals.get(category.id, ZERO) == ZERO:
            violations.append(
                Violation(
                    rule=ViolationRule.REQUIRED_CATEGORY,
                    message=f"{category.name} is required but has no budget allocated",
                    category_id=category.id,
                    actual=ZERO,
                )
            )

    return violations


def allocation_warnings(categories: Sequence[BudgetCategory], totals: BudgetTotals) -> List[Violation]:
    """Warn about categories whose share of direct costs exceeds their maximum percentage."""
    warnings: List[Violation] = []
    if totals.direct_costs == ZERO:
        return warnings

    for category in categories:
        if category.max_percentage is None:
            continue
        share = totals.category_totals.get(category.id, ZERO) * HUNDRED / totals.direct_costs
        if share > category.max_percentage:
            warnings.append(
                Violation(
                    severity=ViolationSeverity.WARNING,
                    rule=ViolationRule.MAX_PERCENTAGE,
                    message=(
                        f"{category.name} allocation ({share:.1f}%) exceeds "
                        f"maximum ({category.max_percentage:.1f}%)"
                    ),
                    category_id=category.id,
                    limit=category.max_percentage,
                    actual=share,
                )
            )
    return warnings


def compute_yearly_totals(categories: Sequence[BudgetCategory], project_years: int) -> List[Decimal]:
    """
    Spread direct costs across project years.

    Items with a yearly breakdown contribute those amounts (years beyond the
    breakdown count as zero, extra entries are ignored). Other items are
    split evenly across all years.
    """
    if project_years < 1:
        raise ValueError("project_years must be at least 1")

    years = [ZERO] * project_years
    for category in categories:
        for item in category.items:
            if item.yearly_breakdown:
                for index, amount in enumerate(item.yearly_breakdown[:project_years]):
                    years[index] += amount
            else:
                share = item.line_total / project_years
                for index in range(project_years):
                    years[index] += share
    return years


def build_proposal_budget(
    categories: Sequence[BudgetCategory],
    totals: BudgetTotals,
    justification: str = "",
) -> ProposalBudget:
    """Summarize the budget in the shape stored on a proposal."""
    return ProposalBudget(
        total_requested=totals.total_budget - totals.cost_share,
        direct_costs=totals.direct_costs,
        indirect_costs=totals.indirect_costs,
        total_costs=totals.total_budget,
        cost_share=totals.cost_share,
        categories=[
            ProposalBudgetCategory(
                id=category.id,
                name=category.name,
                total=totals.category_totals.get(category.id, ZERO),
                items=[
                    ProposalBudgetLineItem(
                        id=item.id,
                        description=item.description,
                        quantity=item.quantity,
                        unit_cost=item.unit_cost,
                        total=item.line_total,
                        justification=item.justification,
                    )
                    for item in category.items
                ],
            )
            for category in categories
        ],
        justification=justification,
    )


# =============================================================================
# Engine
# =============================================================================


class BudgetEngine:
    """
    Owns a budget's category tree for one editing session.

    Every mutation recomputes totals and violations from scratch and returns
    a ``BudgetSnapshot``. The engine does no locking; callers serialize
    mutations per instance.
    """

    def __init__(
        self,
        categories: Iterable[Union[BudgetCategory, Dict[str, Any]]],
        rules: Optional[Union[BudgetRuleSet, Dict[str, Any]]] = None,
        on_change: Optional[Callable[[BudgetSnapshot], None]] = None,
        item_id_prefix: Optional[str] = None,
    ):
        """
        Initialize the engine.

        Args:
            categories: Initial category tree from a template or saved proposal.
                Copied, so the caller's objects are never mutated.
            rules: Funder rule set
            on_change: Called with the new snapshot after each mutation
            item_id_prefix: Prefix for generated item ids
        """
        self._categories: List[BudgetCategory] = [
            category.model_copy(deep=True)
            if isinstance(category, BudgetCategory)
            else BudgetCategory.model_validate(category)
            for category in categories
        ]
        category_ids = [category.id for category in self._categories]
        if len(category_ids) != len(set(category_ids)):
            raise ValueError("Category ids must be unique")

        self._rules = self._coerce_rules(rules)
        self._on_change = on_change
        self._item_id_prefix = item_id_prefix or settings.item_id_prefix
        self._issued_item_ids = {item.id for category in self._categories for item in category.items}

    @staticmethod
    def _coerce_rules(rules: Optional[Union[BudgetRuleSet, Dict[str, Any]]]) -> BudgetRuleSet:
        if rules is None:
            return BudgetRuleSet()
        if isinstance(rules, BudgetRuleSet):
            return rules.model_copy(deep=True)
        return BudgetRuleSet.model_validate(rules)

    # =========================================================================
    # State
    # =========================================================================

    @property
    def categories(self) -> List[BudgetCategory]:
        """Copy of the current category tree."""
        return [category.model_copy(deep=True) for category in self._categories]

    @property
    def rules(self) -> BudgetRuleSet:
        return self._rules.model_copy(deep=True)

    @property
    def totals(self) -> BudgetTotals:
        return compute_totals(self._categories, self._rules)

    @property
    def violations(self) -> List[Violation]:
        return validate(self._categories, self._rules, self.totals)

    def snapshot(self) -> BudgetSnapshot:
        """Current categories, totals and violations."""
        totals = compute_totals(self._categories, self._rules)
        violations = validate(self._categories, self._rules, totals)
        if violations:
            logger.info(
                "budget_non_compliant",
                violation_count=len(violations),
                rules=[violation.rule.value for violation in violations],
            )
        return BudgetSnapshot(
            categories=self.categories,
            totals=totals,
            violations=violations,
            warnings=allocation_warnings(self._categories, totals),
        )

    def yearly_totals(self, project_years: Optional[int] = None) -> List[Decimal]:
        """Direct costs per project year."""
        return compute_yearly_totals(self._categories, project_years or settings.default_project_years)

    def to_proposal_budget(self, justification: str = "") -> ProposalBudget:
        return build_proposal_budget(self._categories, self.totals, justification)

    # =========================================================================
    # Mutations
    # =========================================================================

    def add_item(self, category_id: str) -> BudgetSnapshot:
        """Append a blank item (quantity 1, unit cost 0) to a category."""
        category = self._find_category(category_id)
        item = BudgetItem(id=self._new_item_id(), description="", quantity=1, unit_cost=ZERO)
        category.items.append(item)
        logger.debug("budget_item_added", category_id=category_id, item_id=item.id)
        return self._commit()

    def remove_item(self, category_id: str, item_id: str) -> BudgetSnapshot:
        """Remove an item; removing an item that is already gone is a no-op."""
        category = self._find_category(category_id)
        remaining = [item for item in category.items if item.id != item_id]
        if len(remaining) == len(category.items):
            logger.debug("budget_item_already_absent", category_id=category_id, item_id=item_id)
        else:
            category.items[:] = remaining
            logger.debug("budget_item_removed", category_id=category_id, item_id=item_id)
        return self._commit()

    def update_item(self, category_id: str, item_id: str, field: str, value: Any) -> BudgetSnapshot:
        """
        Set ``description``, ``quantity`` or ``unit_cost`` on an item.

        Numeric input that is not a finite, non-negative number is clamped to
        zero instead of rejected.

        Raises:
            BudgetNotFoundError: Unknown category, item or field.
        """
        category = self._find_category(category_id)
        item = category.find_item(item_id)
        if item is None:
            logger.warning("budget_item_not_found", category_id=category_id, item_id=item_id)
            raise BudgetNotFoundError("Budget item", item_id)

        attribute = EDITABLE_FIELDS.get(field)
        if attribute is None:
            logger.warning("budget_item_field_not_found", field=field)
            raise BudgetNotFoundError("Budget item field", field)

        if attribute == "quantity":
            coerced = coerce_quantity(value)
        elif attribute == "unit_cost":
            coerced = coerce_unit_cost(value)
        else:
            coerced = "" if value is None else str(value)

        setattr(item, attribute, coerced)
        logger.debug("budget_item_updated", category_id=category_id, item_id=item_id, field=attribute)
        return self._commit()

    def set_rules(self, rules: Union[BudgetRuleSet, Dict[str, Any]]) -> BudgetSnapshot:
        """Replace the funder rule set."""
        self._rules = self._coerce_rules(rules)
        logger.debug("budget_rules_replaced")
        return self._commit()

    def apply(
        self,
        request: Union[AddItemRequest, RemoveItemRequest, UpdateItemRequest, ReplaceRulesRequest, Dict[str, Any]],
    ) -> BudgetSnapshot:
        """Dispatch a mutation request (typed or raw payload)."""
        if isinstance(request, dict):
            request = parse_mutation(request)

        if isinstance(request, AddItemRequest):
            return self.add_item(request.category_id)
        if isinstance(request, RemoveItemRequest):
            return self.remove_item(request.category_id, request.item_id)
        if isinstance(request, UpdateItemRequest):
            return self.update_item(request.category_id, request.item_id, request.field, request.value)
        if isinstance(request, ReplaceRulesRequest):
            return self.set_rules(request.rules)
        raise TypeError(f"Unsupported budget mutation: {type(request).__name__}")

    # =========================================================================
    # Helpers
    # =========================================================================

    def _find_category(self, category_id: str) -> BudgetCategory:
        for category in self._categories:
            if category.id == category_id:
                return category
        logger.warning("budget_category_not_found", category_id=category_id)
        raise BudgetNotFoundError("Budget category", category_id)

    def _new_item_id(self) -> str:
        while True:
            candidate = f"{self._item_id_prefix}-{uuid.uuid4().hex[:12]}"
            if candidate not in self._issued_item_ids:
                self._issued_item_ids.add(candidate)
                return candidate

    def _commit(self) -> BudgetSnapshot:
        snapshot = self.snapshot()
        if self._on_change is not None:
            self._on_change(snapshot)
        return snapshot
