import logging

from fastapi import HTTPException, status

from budgetvote.services.errors import (
    BudgetVoteError,
    DuplicateBallot,
    EmptyVoteSet,
    InvalidTransition,
    NotFoundError,
    SessionNotActive,
    ValidationError,
)

_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (InvalidTransition, status.HTTP_400_BAD_REQUEST),
    (SessionNotActive, status.HTTP_400_BAD_REQUEST),
    (DuplicateBallot, status.HTTP_400_BAD_REQUEST),
    (EmptyVoteSet, status.HTTP_400_BAD_REQUEST),
)


def to_http_exception(exc: BudgetVoteError) -> HTTPException:
    """Map a service error to the HTTP status clients expect."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.to_dict())
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal Server Error. Please check logs.",
    )


def audit(action: str, session_id: str, actor) -> None:
    logging.getLogger("audit").info(
        "Audit action: %s",
        {
            "action": action,
            "sessionId": session_id,
            "user": getattr(actor, "login", None) or "unknown",
            "role": getattr(actor, "role", None),
        },
    )
