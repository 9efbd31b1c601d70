from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

from .budget_tree import Ballot, BudgetTree
from .errors import (
    BelowMinimum,
    CategoryNotFound,
    SubcategoryBelowMinimum,
    SubcategoryNotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    errors: List[ValidationError] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [error.to_dict() for error in self.errors],
        }


def _amount(entry: Mapping[str, Any]) -> int:
    value = entry.get("amount")
    return 0 if value is None else int(value)


def validate_vote(vote: Ballot, tree: BudgetTree) -> ValidationResult:
    """
    Check every allocation of ``vote`` against the session's minimums.

    All problems are collected; nothing short-circuits and nothing raises for
    a bad allocation. The vote itself is only read.
    """
    result = ValidationResult()
    allocations: Sequence[Mapping[str, Any]] = vote.allocations or ()

    for allocation in allocations:
        category_id = str(allocation.get("categoryId"))
        category = tree.category(category_id)
        if category is None:
            result.errors.append(CategoryNotFound(category_id))
            continue

        amount = _amount(allocation)
        if amount < category.min_amount:
            result.errors.append(
                BelowMinimum(category.id, category.name, amount, category.min_amount)
            )

        for sub_allocation in allocation.get("subAllocations") or ():
            subcategory_id = str(sub_allocation.get("subcategoryId"))
            subcategory = category.child(subcategory_id)
            if subcategory is None:
                result.errors.append(SubcategoryNotFound(category.id, subcategory_id))
                continue
            sub_amount = _amount(sub_allocation)
            if sub_amount < subcategory.min_amount:
                result.errors.append(
                    SubcategoryBelowMinimum(
                        category.id,
                        subcategory.id,
                        subcategory.name,
                        sub_amount,
                        subcategory.min_amount,
                    )
                )

    if result.errors:
        logger.debug(
            "Vote rejected with %d validation error(s): %s",
            len(result.errors),
            [error.code for error in result.errors],
        )
    return result
