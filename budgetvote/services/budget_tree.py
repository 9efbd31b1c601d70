"""
Category definitions of a budget session as an explicit tree.

Categories are roots, subcategories are their children and keep a reference
back to the parent. A vote stores subcategory amounts nested inside the
parent's allocation, so a line needs its parent to find its own amount.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence


def _as_int(value: Any, fallback: int = 0) -> int:
    if value is None:
        return fallback
    return int(value)


def find_allocation(
    allocations: Optional[Iterable[Mapping[str, Any]]],
    key: str,
    value: str,
) -> Optional[Mapping[str, Any]]:
    for allocation in allocations or ():
        if allocation.get(key) == value:
            return allocation
    return None


@dataclass(frozen=True)
class Ballot:
    """The allocation payload of one vote, as stored."""

    allocations: Sequence[Mapping[str, Any]] = ()
    income_allocations: Sequence[Mapping[str, Any]] = ()


@dataclass(eq=False)
class BudgetLine:
    id: str
    name: str
    min_amount: int = 0
    default_amount: int = 0
    is_fixed: bool = False
    fixed_percentage: Optional[float] = None
    parent: Optional["BudgetLine"] = field(default=None, repr=False)
    children: List["BudgetLine"] = field(default_factory=list, repr=False)

    @property
    def is_category(self) -> bool:
        return self.parent is None

    @property
    def path(self) -> str:
        if self.parent is None:
            return self.id
        return f"{self.parent.id}/{self.id}"

    def child(self, line_id: str) -> Optional["BudgetLine"]:
        for line in self.children:
            if line.id == line_id:
                return line
        return None

    def add_child(self, line: "BudgetLine") -> "BudgetLine":
        line.parent = self
        self.children.append(line)
        return line

    def allocation_in(
        self, allocations: Sequence[Mapping[str, Any]]
    ) -> Optional[Mapping[str, Any]]:
        """Return the vote entry addressing this line, or None."""
        if self.parent is None:
            return find_allocation(allocations, "categoryId", self.id)
        parent_entry = self.parent.allocation_in(allocations)
        if parent_entry is None:
            return None
        return find_allocation(
            parent_entry.get("subAllocations"), "subcategoryId", self.id
        )

    def amount_in(self, allocations: Sequence[Mapping[str, Any]]) -> int:
        entry = self.allocation_in(allocations)
        if entry is None:
            return 0
        return _as_int(entry.get("amount"))

    @classmethod
    def from_definition(
        cls, definition: Mapping[str, Any], parent: Optional["BudgetLine"] = None
    ) -> "BudgetLine":
        min_amount = _as_int(definition.get("minAmount"))
        line = cls(
            id=str(definition["id"]),
            name=str(definition.get("name") or definition["id"]),
            min_amount=min_amount,
            default_amount=_as_int(definition.get("defaultAmount"), min_amount),
            is_fixed=bool(definition.get("isFixed", False)),
            fixed_percentage=definition.get("fixedPercentage"),
        )
        if parent is not None:
            parent.add_child(line)
        for sub_definition in definition.get("subcategories") or ():
            cls.from_definition(sub_definition, parent=line)
        return line


@dataclass(frozen=True)
class IncomeLine:
    id: str
    name: str
    amount: int = 0
    is_tax_rate: bool = False
    tax_rate_percent: Optional[float] = None

    def allocation_in(
        self, income_allocations: Sequence[Mapping[str, Any]]
    ) -> Optional[Mapping[str, Any]]:
        return find_allocation(income_allocations, "categoryId", self.id)

    def amount_in(self, income_allocations: Sequence[Mapping[str, Any]]) -> int:
        entry = self.allocation_in(income_allocations)
        if entry is None:
            return 0
        return _as_int(entry.get("amount"))

    def tax_rate_in(
        self, income_allocations: Sequence[Mapping[str, Any]]
    ) -> Optional[float]:
        entry = self.allocation_in(income_allocations)
        if entry is None:
            return None
        rate = entry.get("taxRatePercent")
        return None if rate is None else float(rate)

    @classmethod
    def from_definition(cls, definition: Mapping[str, Any]) -> "IncomeLine":
        rate = definition.get("taxRatePercent")
        return cls(
            id=str(definition["id"]),
            name=str(definition.get("name") or definition["id"]),
            amount=_as_int(definition.get("amount")),
            is_tax_rate=bool(definition.get("isTaxRate", False)),
            tax_rate_percent=None if rate is None else float(rate),
        )


class BudgetTree:
    """Expense categories (with subcategories) and income categories of a session."""

    def __init__(
        self,
        categories: Sequence[BudgetLine],
        income_categories: Sequence[IncomeLine] = (),
    ):
        self.categories: List[BudgetLine] = list(categories)
        self.income_categories: List[IncomeLine] = list(income_categories)
        self._by_id: Dict[str, BudgetLine] = {line.id: line for line in self.categories}

    @classmethod
    def from_definitions(
        cls,
        categories: Optional[Iterable[Mapping[str, Any]]],
        income_categories: Optional[Iterable[Mapping[str, Any]]] = None,
    ) -> "BudgetTree":
        return cls(
            [BudgetLine.from_definition(item) for item in categories or ()],
            [IncomeLine.from_definition(item) for item in income_categories or ()],
        )

    @classmethod
    def for_session(cls, session: Any) -> "BudgetTree":
        return cls.from_definitions(session.categories, session.income_categories)

    def category(self, category_id: str) -> Optional[BudgetLine]:
        return self._by_id.get(category_id)

    def lines(self) -> Iterable[BudgetLine]:
        for category in self.categories:
            yield category
            yield from category.children

    def definition_problems(self) -> List[str]:
        """Describe every line whose minimum exceeds its default amount."""
        problems: List[str] = []
        seen: set[str] = set()
        for category in self.categories:
            if category.id in seen:
                problems.append(f"Duplicate category id {category.id}")
            seen.add(category.id)
        for line in self.lines():
            if line.min_amount > line.default_amount:
                problems.append(
                    f"{line.path}: minAmount {line.min_amount} exceeds "
                    f"defaultAmount {line.default_amount}"
                )
        return problems
