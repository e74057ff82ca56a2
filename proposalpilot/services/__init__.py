"""
Budget builder services: the composition/compliance engine and funder templates.
"""

from proposalpilot.services.budget_engine import (
    BudgetEngine,
    allocation_warnings,
    build_proposal_budget,
    coerce_quantity,
    coerce_unit_cost,
    compute_totals,
    compute_yearly_totals,
    validate,
)
from proposalpilot.services.budget_templates import (
    ALL_BUDGET_TEMPLATES,
    BudgetTemplateService,
    CategoryDefinition,
    FunderBudgetTemplate,
    budget_template_service,
)

__all__ = [
    "ALL_BUDGET_TEMPLATES",
    "BudgetEngine",
    "BudgetTemplateService",
    "CategoryDefinition",
    "FunderBudgetTemplate",
    "allocation_warnings",
    "budget_template_service",
    "build_proposal_budget",
    "coerce_quantity",
    "coerce_unit_cost",
    "compute_totals",
    "compute_yearly_totals",
    "validate",
]
