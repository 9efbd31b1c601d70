from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field, field_validator

from budgetvote.utils.timeutils import as_utc

from .base import CamelModel


class SubAllocationIn(CamelModel):
    subcategory_id: str
    amount: int = Field(ge=0)


class AllocationIn(CamelModel):
    category_id: str
    amount: int = Field(ge=0)
    sub_allocations: List[SubAllocationIn] = Field(default_factory=list)


class IncomeAllocationIn(CamelModel):
    category_id: str
    amount: int = Field(ge=0)
    tax_rate_percent: Optional[float] = Field(default=None, ge=0, le=100)


class BudgetVoteSubmit(CamelModel):
    session_id: str
    allocations: List[AllocationIn] = Field(default_factory=list)
    income_allocations: List[IncomeAllocationIn] = Field(default_factory=list)
    total_expenses: Optional[int] = Field(default=None, ge=0)
    total_income: Optional[int] = Field(default=None, ge=0)

    def stored_allocations(self) -> List[Dict[str, Any]]:
        return [item.model_dump(by_alias=True) for item in self.allocations]

    def stored_income_allocations(self) -> List[Dict[str, Any]]:
        return [item.model_dump(by_alias=True) for item in self.income_allocations]

    def derived_totals(self) -> tuple[int, int]:
        """Submitted totals, or the sums of the top-level amounts when absent."""
        expenses = self.total_expenses
        if expenses is None:
            expenses = sum(item.amount for item in self.allocations)
        income = self.total_income
        if income is None:
            income = sum(item.amount for item in self.income_allocations)
        return expenses, income


class BudgetVoteRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    vote_id: str
    session_id: str
    user_id: str
    allocations: List[Dict[str, Any]]
    income_allocations: List[Dict[str, Any]]
    total_expenses: int
    total_income: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class ResultRecomputeRequest(CamelModel):
    session_id: str
