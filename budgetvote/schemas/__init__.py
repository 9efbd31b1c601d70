from .budget import (
    AllocationIn,
    BudgetVoteRead,
    BudgetVoteSubmit,
    IncomeAllocationIn,
    ResultRecomputeRequest,
    SubAllocationIn,
)
from .session import (
    AdvancePhaseRequest,
    ArchivedWinnerRead,
    CategoryDefinition,
    ExecuteTerminationRequest,
    FinalVoteCreate,
    IncomeCategoryDefinition,
    ProposalCreate,
    ProposalRead,
    ScheduleTerminationRequest,
    SessionCreate,
    SessionRead,
    SubcategoryDefinition,
)

__all__ = [
    "AllocationIn",
    "BudgetVoteRead",
    "BudgetVoteSubmit",
    "IncomeAllocationIn",
    "ResultRecomputeRequest",
    "SubAllocationIn",
    "AdvancePhaseRequest",
    "ArchivedWinnerRead",
    "CategoryDefinition",
    "ExecuteTerminationRequest",
    "FinalVoteCreate",
    "IncomeCategoryDefinition",
    "ProposalCreate",
    "ProposalRead",
    "ScheduleTerminationRequest",
    "SessionCreate",
    "SessionRead",
    "SubcategoryDefinition",
]
