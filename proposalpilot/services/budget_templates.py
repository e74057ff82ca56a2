"""
Budget Templates Service
Funder budget templates used to start a budget builder session.

This service handles:
- Standard budget category definitions
- Funder rule sets (indirect cost rates and caps, budget limits, cost share)
- Building an empty category tree and engine for a mechanism
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

import structlog

from proposalpilot.core.exceptions import BudgetNotFoundError
from proposalpilot.schemas.budgets import BudgetCategory, BudgetRuleSet, BudgetSnapshot
from proposalpilot.services.budget_engine import BudgetEngine

logger = structlog.get_logger(__name__)


# =============================================================================
# Budget Categories
# =============================================================================


class StandardCategory(str, Enum):
    """Standard budget categories for grant proposals."""

    PERSONNEL = "personnel"
    EQUIPMENT = "equipment"
    TRAVEL = "travel"
    SUPPLIES = "supplies"
    CONSULTANTS = "consultants"
    OTHER = "other"


@dataclass(frozen=True)
class CategoryDefinition:
    """Definition for a budget category within a funder template."""

    code: str
    name: str
    description: str
    required: bool = False
    max_percentage: Optional[float] = None

    def to_category(self) -> BudgetCategory:
        """Build an empty category for a new budget."""
        return BudgetCategory(
            id=self.code,
            name=self.name,
            description=self.description,
            required=self.required,
            max_percentage=Decimal(str(self.max_percentage)) if self.max_percentage is not None else None,
        )


CATEGORY_NAMES = {
    StandardCategory.PERSONNEL: (
        "Personnel",
        "Salaries, wages, and fringe benefits for PI, co-investigators, postdocs, graduate students, and staff",
    ),
    StandardCategory.EQUIPMENT: (
        "Equipment",
        "Equipment items costing $5,000 or more per unit with useful life of more than one year",
    ),
    StandardCategory.TRAVEL: (
        "Travel",
        "Domestic and international travel for conferences, collaborations, and fieldwork",
    ),
    StandardCategory.SUPPLIES: (
        "Supplies",
        "Consumable materials, chemicals, reagents, software licenses, publication costs",
    ),
    StandardCategory.CONSULTANTS: (
        "Consultants/Subawards",
        "Consultant fees, subcontracts, and collaborative agreements",
    ),
    StandardCategory.OTHER: (
        "Other Direct Costs",
        "Participant support, animal care, human subjects costs, service center charges",
    ),
}


def _categories(maxima: dict[str, float], required: tuple[str, ...] = ("personnel",)) -> list[CategoryDefinition]:
    """Build category definitions in standard order for the codes present in ``maxima``."""
    definitions = []
    for category in StandardCategory:
        if category.value not in maxima:
            continue
        name, description = CATEGORY_NAMES[category]
        definitions.append(
            CategoryDefinition(
                code=category.value,
                name=name,
                description=description,
                required=category.value in required,
                max_percentage=maxima[category.value],
            )
        )
    return definitions


# =============================================================================
# Funder Templates
# =============================================================================


@dataclass
class FunderBudgetTemplate:
    """Budget template for a specific grant mechanism."""

    mechanism_code: str
    mechanism_name: str
    agency: str
    typical_duration_years: int
    rules: BudgetRuleSet
    categories: list[CategoryDefinition]
    notes: list[str] = field(default_factory=list)


# NIH Mechanism Templates
NIH_BUDGET_TEMPLATES = {
    "R01": FunderBudgetTemplate(
        mechanism_code="R01",
        mechanism_name="Research Project Grant",
        agency="NIH",
        typical_duration_years=5,
        rules=BudgetRuleSet(indirect_cost_rate=Decimal("52")),
        categories=_categories(
            {"personnel": 80.0, "equipment": 15.0, "travel": 5.0, "supplies": 25.0, "consultants": 20.0, "other": 10.0}
        ),
        notes=[
            "Modular budget for requests up to $250K direct costs/year",
            "Personnel typically the largest category",
            "Equipment needs strong justification",
        ],
    ),
    "R21": FunderBudgetTemplate(
        mechanism_code="R21",
        mechanism_name="Exploratory/Developmental Research Grant",
        agency="NIH",
        typical_duration_years=2,
        rules=BudgetRuleSet(indirect_cost_rate=Decimal("52"), total_budget_limit=Decimal("418000")),
        categories=_categories(
            {"personnel": 75.0, "equipment": 20.0, "travel": 5.0, "supplies": 35.0, "consultants": 15.0, "other": 10.0}
        ),
        notes=[
            "Direct costs capped at $275K over 2 years",
            "No preliminary data required",
            "Cannot request renewal of R21",
        ],
    ),
    "R03": FunderBudgetTemplate(
        mechanism_code="R03",
        mechanism_name="Small Grant Program",
        agency="NIH",
        typical_duration_years=2,
        rules=BudgetRuleSet(
            indirect_cost_rate=Decimal("52"),
            total_budget_limit=Decimal("152000"),
            category_limits={"equipment": Decimal("15000")},
        ),
        categories=_categories(
            {"personnel": 70.0, "equipment": 15.0, "travel": 5.0, "supplies": 40.0, "consultants": 10.0, "other": 15.0}
        ),
        notes=[
            "Direct costs capped at $100K over 2 years",
            "Suitable for pilot studies or small discrete projects",
        ],
    ),
    "T32": FunderBudgetTemplate(
        mechanism_code="T32",
        mechanism_name="Institutional Research Training Grant",
        agency="NIH",
        typical_duration_years=5,
        rules=BudgetRuleSet(indirect_cost_rate=Decimal("8")),
        categories=_categories({"personnel": 90.0, "travel": 5.0, "supplies": 10.0, "other": 10.0}),
        notes=[
            "Supports predoctoral and/or postdoctoral trainees",
            "8% F&A rate for training grants",
        ],
    ),
}

# NSF Mechanism Templates
NSF_BUDGET_TEMPLATES = {
    "CAREER": FunderBudgetTemplate(
        mechanism_code="CAREER",
        mechanism_name="Faculty Early Career Development Program",
        agency="NSF",
        typical_duration_years=5,
        rules=BudgetRuleSet(indirect_cost_rate=Decimal("50"), total_budget_limit=Decimal("500000")),
        categories=_categories(
            {"personnel": 70.0, "equipment": 20.0, "travel": 8.0, "supplies": 25.0, "consultants": 10.0, "other": 20.0},
            required=("personnel", "other"),
        ),
        notes=[
            "Requires education/outreach component",
            "Minimum 5-year duration",
        ],
    ),
    "STANDARD": FunderBudgetTemplate(
        mechanism_code="STANDARD",
        mechanism_name="Standard Grant",
        agency="NSF",
        typical_duration_years=3,
        rules=BudgetRuleSet(indirect_cost_rate=Decimal("50")),
        categories=_categories(
            {"personnel": 70.0, "equipment": 25.0, "travel": 8.0, "supplies": 30.0, "consultants": 15.0, "other": 15.0}
        ),
        notes=[
            "Most common NSF research grant type",
            "Check specific program for budget guidance",
        ],
    ),
    "EAGER": FunderBudgetTemplate(
        mechanism_code="EAGER",
        mechanism_name="Early-concept Grants for Exploratory Research",
        agency="NSF",
        typical_duration_years=2,
        rules=BudgetRuleSet(indirect_cost_rate=Decimal("50"), total_budget_limit=Decimal("300000")),
        categories=_categories(
            {"personnel": 70.0, "equipment": 20.0, "travel": 5.0, "supplies": 35.0, "consultants": 10.0, "other": 12.0}
        ),
        notes=[
            "Total budget capped at $300K",
            "Requires program officer invitation/approval",
        ],
    ),
    "RAPID": FunderBudgetTemplate(
        mechanism_code="RAPID",
        mechanism_name="Rapid Response Research",
        agency="NSF",
        typical_duration_years=1,
        rules=BudgetRuleSet(indirect_cost_rate=Decimal("50"), total_budget_limit=Decimal("200000")),
        categories=_categories(
            {"personnel": 65.0, "equipment": 25.0, "travel": 20.0, "supplies": 35.0, "consultants": 10.0, "other": 10.0}
        ),
        notes=[
            "Total budget capped at $200K",
            "Higher travel costs typical for field research",
        ],
    ),
    "MRI": FunderBudgetTemplate(
        mechanism_code="MRI",
        mechanism_name="Major Research Instrumentation",
        agency="NSF",
        typical_duration_years=3,
        rules=BudgetRuleSet(
            indirect_cost_rate=Decimal("50"),
            max_indirect_cost=Decimal("0"),
            cost_share_required=True,
            cost_share_percentage=Decimal("30"),
        ),
        categories=_categories({"personnel": 30.0, "equipment": 100.0, "other": 20.0}, required=("equipment",)),
        notes=[
            "Instrument acquisition is not subject to indirect costs",
            "Ph.D.-granting institutions provide 30% cost sharing",
        ],
    ),
}

# Combined templates
ALL_BUDGET_TEMPLATES = {**NIH_BUDGET_TEMPLATES, **NSF_BUDGET_TEMPLATES}


# =============================================================================
# Template Service
# =============================================================================


class BudgetTemplateService:
    """Service for looking up funder templates and starting budget sessions."""

    def __init__(self, templates: Optional[dict[str, FunderBudgetTemplate]] = None):
        self.templates = templates if templates is not None else ALL_BUDGET_TEMPLATES

    def get_template(self, mechanism_code: str) -> Optional[FunderBudgetTemplate]:
        """Get budget template for a mechanism."""
        return self.templates.get(mechanism_code.upper())

    def get_all_templates(self) -> dict[str, FunderBudgetTemplate]:
        """Get all available budget templates."""
        return self.templates

    def get_templates_by_agency(self, agency: str) -> dict[str, FunderBudgetTemplate]:
        """Get templates filtered by agency."""
        return {
            code: template for code, template in self.templates.items() if template.agency.upper() == agency.upper()
        }

    def require_template(self, mechanism_code: str) -> FunderBudgetTemplate:
        """Get a template or raise ``BudgetNotFoundError``."""
        template = self.get_template(mechanism_code)
        if template is None:
            logger.warning("budget_template_not_found", mechanism_code=mechanism_code)
            raise BudgetNotFoundError("Budget template", mechanism_code)
        return template

    def build_categories(self, mechanism_code: str) -> list[BudgetCategory]:
        """Build a fresh, empty category tree for a mechanism."""
        template = self.require_template(mechanism_code)
        return [definition.to_category() for definition in template.categories]

    def create_engine(
        self,
        mechanism_code: str,
        rules: Optional[BudgetRuleSet] = None,
        on_change: Optional[Callable[[BudgetSnapshot], None]] = None,
    ) -> BudgetEngine:
        """
        Start a budget builder session from a funder template.

        Args:
            mechanism_code: Grant mechanism code (e.g., 'R01', 'CAREER')
            rules: Overrides the template's rule set when provided
                (e.g. an institution's negotiated indirect cost rate)
            on_change: Called with the new snapshot after each mutation

        Returns:
            Engine holding the template's empty category tree
        """
        template = self.require_template(mechanism_code)
        logger.info(
            "budget_session_started",
            mechanism_code=template.mechanism_code,
            agency=template.agency,
            categories=len(template.categories),
        )
        return BudgetEngine(
            categories=self.build_categories(mechanism_code),
            rules=rules if rules is not None else template.rules,
            on_change=on_change,
        )


# Singleton service instance
budget_template_service = BudgetTemplateService()
