"""Proposal governance error taxonomy."""

from __future__ import annotations

from enum import Enum
from typing import Any

from src.infra.result import Error
from src.infra.result import PermissionDeniedError as BasePermissionDeniedError


class GovernanceErrorCode(str, Enum):
    """Error codes for proposal governance operations.

    Naming: GOVERNANCE_<CATEGORY>_<DETAIL>
    """

    GOVERNANCE_NOT_FOUND_PROPOSAL = "GOVERNANCE_NOT_FOUND_PROPOSAL"
    GOVERNANCE_NOT_FOUND_BAND = "GOVERNANCE_NOT_FOUND_BAND"

    GOVERNANCE_NOT_AUTHORIZED = "GOVERNANCE_NOT_AUTHORIZED"
    GOVERNANCE_NOT_AUTHORIZED_INACTIVE = "GOVERNANCE_NOT_AUTHORIZED_INACTIVE"
    GOVERNANCE_NOT_AUTHORIZED_ROLE = "GOVERNANCE_NOT_AUTHORIZED_ROLE"

    GOVERNANCE_VOTING_CLOSED = "GOVERNANCE_VOTING_CLOSED"
    GOVERNANCE_VOTING_DEADLINE_PASSED = "GOVERNANCE_VOTING_DEADLINE_PASSED"

    GOVERNANCE_ALREADY_CLOSED = "GOVERNANCE_ALREADY_CLOSED"

    GOVERNANCE_INVALID_CONFIGURATION = "GOVERNANCE_INVALID_CONFIGURATION"

    GOVERNANCE_UNKNOWN_ERROR = "GOVERNANCE_UNKNOWN_ERROR"


class GovernanceError(Error):
    """Base error for proposal governance operations."""

    error_code: GovernanceErrorCode = GovernanceErrorCode.GOVERNANCE_UNKNOWN_ERROR

    def __init__(
        self, message: str, *, error_code: GovernanceErrorCode | None = None, **kwargs: Any
    ) -> None:
        super().__init__(message, **kwargs)
        if error_code is not None:
            self.error_code = error_code

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["error_code"] = self.error_code.value
        return payload


class NotFoundError(GovernanceError):
    """Proposal or band does not exist."""

    error_code = GovernanceErrorCode.GOVERNANCE_NOT_FOUND_PROPOSAL

    def __init__(
        self,
        message: str = "Proposal not found.",
        *,
        error_code: GovernanceErrorCode = GovernanceErrorCode.GOVERNANCE_NOT_FOUND_PROPOSAL,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=error_code, **kwargs)


class NotAuthorizedError(GovernanceError, BasePermissionDeniedError):
    """Role or membership status fails an eligibility or close-permission check."""

    error_code = GovernanceErrorCode.GOVERNANCE_NOT_AUTHORIZED

    def __init__(
        self,
        message: str = "You do not have permission to perform this action.",
        *,
        error_code: GovernanceErrorCode = GovernanceErrorCode.GOVERNANCE_NOT_AUTHORIZED,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=error_code, **kwargs)


class VotingClosedError(GovernanceError):
    """Vote attempted after the deadline or once the proposal left OPEN."""

    error_code = GovernanceErrorCode.GOVERNANCE_VOTING_CLOSED

    def __init__(
        self,
        message: str = "Voting period has ended.",
        *,
        error_code: GovernanceErrorCode = GovernanceErrorCode.GOVERNANCE_VOTING_CLOSED,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code=error_code, **kwargs)


class AlreadyClosedError(GovernanceError):
    """Close attempted on a proposal that already reached a terminal state."""

    error_code = GovernanceErrorCode.GOVERNANCE_ALREADY_CLOSED

    def __init__(self, message: str = "Proposal already closed.", **kwargs: Any) -> None:
        super().__init__(
            message, error_code=GovernanceErrorCode.GOVERNANCE_ALREADY_CLOSED, **kwargs
        )


class InvalidConfigurationError(GovernanceError):
    """Band governance configuration holds a value the engine does not know."""

    error_code = GovernanceErrorCode.GOVERNANCE_INVALID_CONFIGURATION

    def __init__(
        self, message: str = "Band governance configuration is invalid.", **kwargs: Any
    ) -> None:
        super().__init__(
            message, error_code=GovernanceErrorCode.GOVERNANCE_INVALID_CONFIGURATION, **kwargs
        )


__all__ = [
    "AlreadyClosedError",
    "GovernanceError",
    "GovernanceErrorCode",
    "InvalidConfigurationError",
    "NotAuthorizedError",
    "NotFoundError",
    "VotingClosedError",
]
