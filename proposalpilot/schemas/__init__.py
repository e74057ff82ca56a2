"""
ProposalPilot Pydantic Schemas
Models exchanged between the budget engine and its host application.
"""
from proposalpilot.schemas.budgets import (
    AddItemRequest,
    BudgetCategory,
    BudgetItem,
    BudgetMutation,
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

__all__ = [
    "AddItemRequest",
    "BudgetCategory",
    "BudgetItem",
    "BudgetMutation",
    "BudgetRuleSet",
    "BudgetSnapshot",
    "BudgetTotals",
    "ProposalBudget",
    "ProposalBudgetCategory",
    "ProposalBudgetLineItem",
    "RemoveItemRequest",
    "ReplaceRulesRequest",
    "UpdateItemRequest",
    "Violation",
    "ViolationRule",
    "ViolationSeverity",
    "parse_mutation",
]
