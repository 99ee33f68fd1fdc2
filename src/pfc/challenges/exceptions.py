"""Challenge domain errors.

Every synchronous rejection raised by the state machine is a ChallengeError
carrying the HTTP status the API answers with. They subclass ValueError so
callers that only care about "bad request" can keep catching ValueError.
"""

from __future__ import annotations


class ChallengeError(ValueError):
    """Base class for rejected challenge actions."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ChallengeValidationError(ChallengeError):
    """Missing or invalid fields."""


class ChallengeNotFound(ChallengeError):
    """Challenge or user does not exist."""

    status_code = 404


class ChallengeAuthorizationError(ChallengeError):
    """Caller's role does not permit the action."""

    status_code = 403


class ChallengeStateError(ChallengeError):
    """Challenge is not in the status the action requires."""

    status_code = 409


class ChallengeRuleError(ChallengeError):
    """A business rule (cap, collateral) rejected the action."""


class ActiveChallengeCapExceeded(ChallengeRuleError):
    def __init__(self, max_active: int) -> None:
        super().__init__(f"Maximum {max_active} active challenges allowed")
        self.max_active = max_active


class InsufficientXP(ChallengeRuleError):
    def __init__(self, required: int, accepting: bool = False) -> None:
        if accepting:
            message = f"Insufficient XP. Need {required} XP to accept."
        else:
            message = f"Insufficient XP. Need {required} XP to cover potential loss."
        super().__init__(message)
        self.required = required


class SettlementError(RuntimeError):
    """The settlement batch could not run at all (e.g. selection failed)."""
