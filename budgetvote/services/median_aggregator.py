"""
Collective budget from individual votes.

Every expense and income line takes the median of what voters gave it (an
absent allocation counts as zero). Expense medians are then turned into
shares of their total and scaled so that expenses equal the median income.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from .budget_tree import Ballot, BudgetLine, BudgetTree, IncomeLine
from .errors import EmptyVoteSet

logger = logging.getLogger(__name__)


def calculate_median(values: Sequence[float]) -> float:
    """Median of ``values``; 0 for an empty sequence."""
    if not values:
        return 0
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[middle - 1] + ordered[middle]) / 2
    return ordered[middle]


def median_for_line(line: BudgetLine, votes: Sequence[Ballot]) -> float:
    return calculate_median([line.amount_in(vote.allocations) for vote in votes])


def median_income(line: IncomeLine, votes: Sequence[Ballot]) -> float:
    return calculate_median(
        [line.amount_in(vote.income_allocations) for vote in votes]
    )


def median_tax_rate(line: IncomeLine, votes: Sequence[Ballot]) -> float:
    """Median over voters who gave a rate; 0 when nobody did."""
    rates = [
        rate
        for rate in (line.tax_rate_in(vote.income_allocations) for vote in votes)
        if rate is not None
    ]
    return calculate_median(rates)


def _percentage(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0


def aggregate(
    votes: Sequence[Ballot],
    tree: BudgetTree,
    *,
    session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Compute the balanced median budget for ``votes``.

    Pure: the same votes and tree always give the same result. Raises
    ``EmptyVoteSet`` when there is nothing to aggregate.
    """
    if not votes:
        raise EmptyVoteSet(session_id)

    income_allocations: List[Dict[str, Any]] = []
    total_median_income: float = 0
    for income_line in tree.income_categories:
        median_amount = median_income(income_line, votes)
        income_allocations.append(
            {
                "categoryId": income_line.id,
                "medianAmount": median_amount,
                "medianTaxRatePercent": (
                    median_tax_rate(income_line, votes)
                    if income_line.is_tax_rate
                    else None
                ),
            }
        )
        total_median_income += median_amount

    category_medians: List[tuple[BudgetLine, float, List[Dict[str, Any]]]] = []
    total_median_expenses: float = 0
    for category in tree.categories:
        category_median = median_for_line(category, votes)
        sub_allocations = []
        for subcategory in category.children:
            sub_median = median_for_line(subcategory, votes)
            sub_allocations.append(
                {
                    "subcategoryId": subcategory.id,
                    "medianAmount": sub_median,
                    "percentageOfCategory": _percentage(sub_median, category_median),
                }
            )
        category_medians.append((category, category_median, sub_allocations))
        total_median_expenses += category_median

    balanced_expenses = total_median_income
    median_allocations: List[Dict[str, Any]] = []
    for category, category_median, sub_allocations in category_medians:
        share = _percentage(category_median, total_median_expenses)
        median_allocations.append(
            {
                "categoryId": category.id,
                "medianAmount": share / 100 * balanced_expenses,
                "percentageOfTotal": share,
                "subAllocations": sub_allocations,
            }
        )

    logger.debug(
        "Aggregated %d vote(s) for session %s: expenses=%s income=%s",
        len(votes),
        session_id,
        total_median_expenses,
        total_median_income,
    )
    return {
        "medianAllocations": median_allocations,
        "medianIncomeAllocations": income_allocations,
        "totalMedianExpenses": total_median_expenses,
        "totalMedianIncome": total_median_income,
        "balancedExpenses": balanced_expenses,
        "voterCount": len(votes),
    }
