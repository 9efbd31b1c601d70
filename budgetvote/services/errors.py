"""
Typed errors raised by the voting services.

Every class carries a machine-readable ``code`` and keeps its detail in
attributes; ``params`` exposes that detail as a JSON-friendly mapping so the
HTTP layer can return it unchanged.

    BudgetVoteError
    +-- ValidationError
    |   +-- CategoryNotFound
    |   +-- BelowMinimum
    |   +-- SubcategoryNotFound
    |   +-- SubcategoryBelowMinimum
    +-- NotFoundError
    +-- AlreadyClaimed
    +-- EmptyVoteSet
    +-- InvalidTransition
    +-- SessionNotActive
    +-- DuplicateBallot
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class BudgetVoteError(Exception):
    """Base class for all service errors."""

    code: str = "BUDGETVOTE_ERROR"

    @property
    def params(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self), "params": self.params}


# Vote validation


class ValidationError(BudgetVoteError):
    """A submitted vote breaks a category constraint. Collected, never fatal."""

    code: str = "VALIDATION_ERROR"


class CategoryNotFound(ValidationError):
    code: str = "CATEGORY_NOT_FOUND"

    def __init__(self, category_id: str):
        self.category_id = category_id
        super().__init__(f"Category {category_id} does not exist in this session")

    @property
    def params(self) -> Dict[str, Any]:
        return {"categoryId": self.category_id}


class BelowMinimum(ValidationError):
    code: str = "BELOW_MINIMUM"

    def __init__(self, category_id: str, category: str, amount: int, minimum: int):
        self.category_id = category_id
        self.category = category
        self.amount = amount
        self.minimum = minimum
        super().__init__(
            f"Amount {amount} for {category} is below the minimum {minimum}"
        )

    @property
    def params(self) -> Dict[str, Any]:
        return {
            "categoryId": self.category_id,
            "category": self.category,
            "amount": self.amount,
            "minimum": self.minimum,
        }


class SubcategoryNotFound(ValidationError):
    code: str = "SUBCATEGORY_NOT_FOUND"

    def __init__(self, category_id: str, subcategory_id: str):
        self.category_id = category_id
        self.subcategory_id = subcategory_id
        super().__init__(
            f"Subcategory {subcategory_id} does not exist in category {category_id}"
        )

    @property
    def params(self) -> Dict[str, Any]:
        return {"categoryId": self.category_id, "subcategoryId": self.subcategory_id}


class SubcategoryBelowMinimum(ValidationError):
    code: str = "SUBCATEGORY_BELOW_MINIMUM"

    def __init__(
        self,
        category_id: str,
        subcategory_id: str,
        subcategory: str,
        amount: int,
        minimum: int,
    ):
        self.category_id = category_id
        self.subcategory_id = subcategory_id
        self.subcategory = subcategory
        self.amount = amount
        self.minimum = minimum
        super().__init__(
            f"Amount {amount} for {subcategory} is below the minimum {minimum}"
        )

    @property
    def params(self) -> Dict[str, Any]:
        return {
            "categoryId": self.category_id,
            "subcategoryId": self.subcategory_id,
            "subcategory": self.subcategory,
            "amount": self.amount,
            "minimum": self.minimum,
        }


# Lookups and lifecycle


class NotFoundError(BudgetVoteError):
    code: str = "NOT_FOUND"

    def __init__(self, entity: str, identifier: Optional[str] = None):
        self.entity = entity
        self.identifier = identifier
        suffix = f" {identifier}" if identifier else ""
        super().__init__(f"{entity}{suffix} not found")

    @property
    def params(self) -> Dict[str, Any]:
        return {"entity": self.entity, "id": self.identifier}


class AlreadyClaimed(BudgetVoteError):
    """Another caller won the compare-and-clear. Benign for the loser."""

    code: str = "ALREADY_CLAIMED"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Termination of session {session_id} was already claimed")

    @property
    def params(self) -> Dict[str, Any]:
        return {"sessionId": self.session_id}


class EmptyVoteSet(BudgetVoteError):
    code: str = "EMPTY_VOTE_SET"

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id
        super().__init__("No votes to calculate median from")

    @property
    def params(self) -> Dict[str, Any]:
        return {"sessionId": self.session_id}


class InvalidTransition(BudgetVoteError):
    code: str = "INVALID_TRANSITION"

    def __init__(self, session_id: str, current: str, action: str):
        self.session_id = session_id
        self.current = current
        self.action = action
        super().__init__(f"Cannot {action} session {session_id} while it is {current}")

    @property
    def params(self) -> Dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "current": self.current,
            "action": self.action,
        }


class SessionNotActive(BudgetVoteError):
    code: str = "SESSION_NOT_ACTIVE"

    def __init__(self, session_id: str, status: str, phase: Optional[str] = None):
        self.session_id = session_id
        self.status = status
        self.phase = phase
        super().__init__(
            f"Session {session_id} does not accept this submission "
            f"(status={status}, phase={phase})"
        )

    @property
    def params(self) -> Dict[str, Any]:
        return {"sessionId": self.session_id, "status": self.status, "phase": self.phase}


class DuplicateBallot(BudgetVoteError):
    code: str = "DUPLICATE_BALLOT"

    def __init__(self, session_id: str, user_id: str):
        self.session_id = session_id
        self.user_id = user_id
        super().__init__(f"User {user_id} already voted in session {session_id}")

    @property
    def params(self) -> Dict[str, Any]:
        return {"sessionId": self.session_id, "userId": self.user_id}
