from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator

from budgetvote.utils.timeutils import as_utc

from .base import CamelModel


class SubcategoryDefinition(CamelModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    min_amount: int = Field(default=0, ge=0)
    default_amount: Optional[int] = Field(default=None, ge=0)
    is_fixed: bool = False

    @model_validator(mode="after")
    def _check_minimum(self) -> "SubcategoryDefinition":
        if self.default_amount is None:
            self.default_amount = self.min_amount
        if self.min_amount > self.default_amount:
            raise ValueError(
                f"Subcategory {self.id}: minAmount exceeds defaultAmount"
            )
        return self


class CategoryDefinition(CamelModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    default_amount: int = Field(ge=0)
    min_amount: int = Field(default=0, ge=0)
    is_fixed: bool = False
    fixed_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    subcategories: List[SubcategoryDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_minimum(self) -> "CategoryDefinition":
        if self.min_amount > self.default_amount:
            raise ValueError(f"Category {self.id}: minAmount exceeds defaultAmount")
        ids = [sub.id for sub in self.subcategories]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Category {self.id}: duplicate subcategory ids")
        return self


class IncomeCategoryDefinition(CamelModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    amount: int = Field(default=0, ge=0)
    is_tax_rate: bool = False
    tax_rate_percent: Optional[float] = Field(default=None, ge=0, le=100)


class SessionCreate(CamelModel):
    name: str = Field(min_length=1, max_length=200)
    session_type: Literal["budget", "proposal"] = "budget"
    municipality: Optional[str] = Field(default=None, max_length=100)
    total_budget: Optional[int] = Field(default=None, ge=0)
    categories: List[CategoryDefinition] = Field(default_factory=list)
    income_categories: List[IncomeCategoryDefinition] = Field(default_factory=list)
    single_result: bool = False

    @model_validator(mode="after")
    def _check_definitions(self) -> "SessionCreate":
        for label, items in (
            ("category", self.categories),
            ("income category", self.income_categories),
        ):
            ids = [item.id for item in items]
            if len(ids) != len(set(ids)):
                raise ValueError(f"Duplicate {label} ids")
        if self.session_type == "budget" and not self.categories:
            raise ValueError("Budget sessions need at least one category")
        return self

    def stored_categories(self) -> List[Dict[str, Any]]:
        return [item.model_dump(by_alias=True) for item in self.categories]

    def stored_income_categories(self) -> List[Dict[str, Any]]:
        return [item.model_dump(by_alias=True) for item in self.income_categories]


class SessionRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: str
    session_type: str
    name: str
    municipality: Optional[str] = None
    total_budget: Optional[int] = None
    status: str
    phase: str
    categories: List[Dict[str, Any]] = Field(default_factory=list)
    income_categories: List[Dict[str, Any]] = Field(default_factory=list)
    single_result: bool = False
    active_participant_ids: List[str] = Field(
        default_factory=list, alias="activeParticipants"
    )
    created_at: Optional[datetime] = None
    start_date: Optional[datetime] = None
    phase2_start_time: Optional[datetime] = None
    phase2_termination_scheduled: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator(
        "created_at",
        "start_date",
        "phase2_start_time",
        "phase2_termination_scheduled",
        "end_date",
    )
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class AdvancePhaseRequest(CamelModel):
    top_proposal_ids: Optional[List[int]] = None


class ScheduleTerminationRequest(CamelModel):
    grace_seconds: Optional[int] = Field(default=None, ge=0)


class ExecuteTerminationRequest(CamelModel):
    session_id: Optional[str] = None


class ProposalCreate(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    problem: str = ""
    solution: str = ""


class ProposalRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    proposal_id: int
    session_id: str
    title: str
    problem: str
    solution: str
    author_name: str
    status: str


class FinalVoteCreate(CamelModel):
    proposal_id: int
    choice: Literal["yes", "no"]


class ArchivedWinnerRead(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    proposal_id: int
    title: str
    problem: str
    solution: str
    author_name: str
    yes_votes: int
    no_votes: int
    archived_at: Optional[datetime] = None

    @field_validator("archived_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)
