"""
benchline.errors — Domain Error Hierarchy
==========================================

Every rejected operation raises a subclass of :class:`BenchlineError`
carrying a human-readable message (callers match on substrings, so keep
the wording stable), a machine-readable ``code``, and the HTTP status
the API layer answers with.
"""

from __future__ import annotations


class BenchlineError(Exception):
    """Base class for all domain errors."""

    code: str = "ERROR"
    http_status: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"detail": self.message, "code": self.code}


# ---------------------------------------------------------------------------
# Validation — bad input shape, enum or role/team names
# ---------------------------------------------------------------------------
class InvalidInputError(BenchlineError):
    code = "INVALID_INPUT"
    http_status = 400


class RoleAmbiguousError(InvalidInputError):
    code = "ROLE_AMBIGUOUS"


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
class NotFoundError(BenchlineError):
    code = "NOT_FOUND"
    http_status = 404


# ---------------------------------------------------------------------------
# Business rules — whole operation rejected, nothing persisted
# ---------------------------------------------------------------------------
class BusinessRuleError(BenchlineError):
    code = "BUSINESS_RULE"
    http_status = 409


class AlreadyRegisteredError(BusinessRuleError):
    code = "ALREADY_REGISTERED"


class DeadlinePassedError(BusinessRuleError):
    code = "DEADLINE_PASSED"


class RegistrationClosedError(BusinessRuleError):
    code = "REGISTRATION_CLOSED"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------
class AuthorizationError(BenchlineError):
    code = "FORBIDDEN"
    http_status = 403


# ---------------------------------------------------------------------------
# Concurrency — retries exhausted
# ---------------------------------------------------------------------------
class ConcurrentModificationError(BenchlineError):
    code = "CONCURRENT_MODIFICATION"
    http_status = 409
