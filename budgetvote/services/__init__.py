"""Voting rules: validation, aggregation, phases and closing."""

from .budget_tree import Ballot, BudgetLine, BudgetTree, IncomeLine  # noqa: F401
from .median_aggregator import aggregate, calculate_median  # noqa: F401
from .vote_validator import ValidationResult, validate_vote  # noqa: F401

__all__ = [
    "Ballot",
    "BudgetLine",
    "BudgetTree",
    "IncomeLine",
    "aggregate",
    "calculate_median",
    "ValidationResult",
    "validate_vote",
]
