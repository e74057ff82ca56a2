"""
Budget Schemas
Pydantic models for the budget builder: the category/item tree, funder
rule sets, derived totals, compliance violations and mutation requests.
"""
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, computed_field, model_validator
from pydantic.alias_generators import to_camel

MAX_AMOUNT = Decimal("1e16")

NonNegativeDecimal = Annotated[Decimal, Field(ge=0, lt=MAX_AMOUNT)]


class BudgetModel(BaseModel):
    """Base model accepting both snake_case and the UI's camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Category Tree Schemas
# =============================================================================

class BudgetItem(BudgetModel):
    """Single line item in a budget category."""
    id: str = Field(..., min_length=1)
    description: str = ""
    quantity: int = Field(1, ge=0, lt=10**16)
    unit_cost: Decimal = Field(Decimal("0"), ge=0, lt=MAX_AMOUNT)
    yearly_breakdown: Optional[List[NonNegativeDecimal]] = None
    justification: Optional[str] = None

    @computed_field
    @property
    def line_total(self) -> Decimal:
        """Quantity times unit cost."""
        return self.quantity * self.unit_cost


class BudgetCategory(BudgetModel):
    """Budget category holding an ordered list of line items."""
    id: str = Field(..., min_length=1)
    name: str
    description: Optional[str] = None
    required: bool = False
    max_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    items: List[BudgetItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_item_ids(self) -> "BudgetCategory":
        """Item ids must be unique within the category."""
        ids = [item.id for item in self.items]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Item ids must be unique within category {self.id}")
        return self

    @property
    def total(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))

    def find_item(self, item_id: str) -> Optional[BudgetItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


# =============================================================================
# Rule Set Schemas
# =============================================================================

class BudgetRuleSet(BudgetModel):
    """
    Funder budget rules. Absent values mean the rule does not apply;
    ``max_indirect_cost=0`` is a real cap, not "no cap".
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    indirect_cost_rate: Optional[Decimal] = Field(None, ge=0, le=1000, description="Indirect cost rate in percent")
    max_indirect_cost: Optional[Decimal] = Field(None, ge=0, lt=MAX_AMOUNT, description="Absolute cap on indirect costs")
    total_budget_limit: Optional[Decimal] = Field(None, ge=0, lt=MAX_AMOUNT)
    category_limits: Optional[Dict[str, NonNegativeDecimal]] = None
    cost_share_required: Optional[bool] = None
    cost_share_percentage: Optional[Decimal] = Field(None, ge=0, le=100)


# =============================================================================
# Derived State Schemas
# =============================================================================

class BudgetTotals(BudgetModel):
    """Totals derived from the category tree and rule set."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    direct_costs: Decimal
    indirect_costs: Decimal
    cost_share: Decimal
    total_budget: Decimal
    category_totals: Dict[str, Decimal]


class ViolationSeverity(str, Enum):
    """Severity of a compliance finding."""
    ERROR = "error"
    WARNING = "warning"


class ViolationRule(str, Enum):
    """Rule that produced a compliance finding."""
    TOTAL_BUDGET_LIMIT = "total_budget_limit"
    CATEGORY_LIMIT = "category_limit"
    REQUIRED_CATEGORY = "required_category"
    MAX_PERCENTAGE = "max_percentage"


class Violation(BudgetModel):
    """A compliance rule failure."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    severity: ViolationSeverity = ViolationSeverity.ERROR
    rule: ViolationRule
    message: str
    category_id: Optional[str] = None
    limit: Optional[Decimal] = None
    actual: Optional[Decimal] = None


class BudgetSnapshot(BudgetModel):
    """State handed back to the caller after every mutation."""
    categories: List[BudgetCategory]
    totals: BudgetTotals
    violations: List[Violation]
    warnings: List[Violation] = Field(default_factory=list)

    @computed_field
    @property
    def is_compliant(self) -> bool:
        return not self.violations


# =============================================================================
# Mutation Request Schemas
# =============================================================================

class AddItemRequest(BudgetModel):
    """Append a blank item to a category."""
    action: Literal["add_item"] = "add_item"
    category_id: str


class RemoveItemRequest(BudgetModel):
    """Remove an item from a category."""
    action: Literal["remove_item"] = "remove_item"
    category_id: str
    item_id: str


class UpdateItemRequest(BudgetModel):
    """Set one editable field on an item."""
    action: Literal["update_item"] = "update_item"
    category_id: str
    item_id: str
    field: str = Field(..., description="description, quantity or unitCost")
    value: Any = None


class ReplaceRulesRequest(BudgetModel):
    """Swap in a new funder rule set."""
    action: Literal["replace_rules"] = "replace_rules"
    rules: BudgetRuleSet


BudgetMutation = Annotated[
    Union[AddItemRequest, RemoveItemRequest, UpdateItemRequest, ReplaceRulesRequest],
    Field(discriminator="action"),
]

budget_mutation_adapter: TypeAdapter = TypeAdapter(BudgetMutation)


def parse_mutation(payload: Dict[str, Any]):
    """Parse a raw mutation payload into its typed request."""
    return budget_mutation_adapter.validate_python(payload)


# =============================================================================
# Proposal Budget Summary Schemas
# =============================================================================

class ProposalBudgetLineItem(BudgetModel):
    """Line item as stored on a proposal."""
    id: str
    description: str
    quantity: int
    unit_cost: Decimal
    total: Decimal
    justification: Optional[str] = None


class ProposalBudgetCategory(BudgetModel):
    """Category as stored on a proposal."""
    id: str
    name: str
    total: Decimal
    items: List[ProposalBudgetLineItem]


class ProposalBudget(BudgetModel):
    """Proposal-level budget summary."""
    total_requested: Decimal
    direct_costs: Decimal
    indirect_costs: Decimal
    total_costs: Decimal
    cost_share: Decimal
    categories: List[ProposalBudgetCategory]
    justification: str = ""
