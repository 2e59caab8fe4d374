"""Error taxonomy shared by the authorization and validation services.

Validators raise; they never return error values. Messages of validation
errors are reported verbatim to callers, authorization denials are not.
"""

from __future__ import annotations

from typing import Optional


class AdmissionError(Exception):
    """Base class for every error raised by this package."""


class AuthenticationMissing(AdmissionError):
    def __init__(self, message: str = "no authenticated subject on the request") -> None:
        super().__init__(message)


class AuthorizationDenied(AdmissionError):
    # Generic on purpose: never names the rule that was missing.
    def __init__(self, message: str = "insufficient permissions for performing the operation") -> None:
        super().__init__(message)


class PolicyMalformed(AdmissionError):
    """The policy document failed well-formedness checks or admin synthesis."""


class EvaluationError(AdmissionError):
    """An enforcement query could not be evaluated (malformed input)."""


class UnsupportedOperation(AdmissionError):
    """A mutation was attempted against a read-only policy source."""


class NotFoundError(AdmissionError):
    """Raised by fleet-state providers when a point lookup finds nothing."""

    def __init__(self, kind: str, name: str, namespace: Optional[str] = None) -> None:
        self.kind = kind
        self.name = name
        self.namespace = namespace
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {where} not found")


class ValidationError(AdmissionError):
    """Base class for rejected objects."""


class ValidationStructural(ValidationError):
    """A required field is missing or malformed."""


class ValidationBusinessRule(ValidationError):
    """The object violates a named domain constraint."""


class ValidationExternalState(ValidationError):
    """The object conflicts with existing fleet state."""

    NOT_FOUND = "not_found"
    IN_USE = "in_use"
    DUPLICATE = "duplicate"

    def __init__(self, message: str, *, kind: str, name: str = "", reason: str = NOT_FOUND) -> None:
        super().__init__(message)
        self.kind = kind
        self.name = name
        self.reason = reason


class ValidationTimeout(ValidationError):
    def __init__(self, message: str = "validation did not complete before the request deadline") -> None:
        super().__init__(message)


class ExternalProbeFailure(ValidationError):
    """A storage reachability probe failed.

    `category` is one of connect/write/read/list/delete. The message is
    credential-safe; SDK details are only logged.
    """

    CONNECT = "connect"
    WRITE = "write"
    READ = "read"
    LIST = "list"
    DELETE = "delete"

    def __init__(self, category: str, message: str) -> None:
        super().__init__(message)
        self.category = category
