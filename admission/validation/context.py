"""Per-request validation context: collaborators plus the request deadline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, TypeVar, runtime_checkable

from admission.config import AdmissionConfig, load_config
from admission.core.errors import (
    AuthorizationDenied,
    ExternalProbeFailure,
    NotFoundError,
    ValidationExternalState,
    ValidationTimeout,
)
from admission.core.models import ObjectKind, Operation
from admission.providers.fleet import DeadlineAware, FleetState
from admission.providers.storage_probe import ProbeFactory, StorageTarget, probe_factory

T = TypeVar("T")


@runtime_checkable
class Authorizer(Protocol):
    def enforce(self, subject: str, resource: str, action: str, obj: str) -> bool: ...


@dataclass
class ValidationRequest:
    """
    One object to validate.

    `existing` is the fleet's current version of the object on update, when
    the caller already fetched it.
    """

    kind: ObjectKind
    operation: Operation
    namespace: str
    subject: str
    obj: Any
    name: str = ""
    existing: Any = None


@dataclass
class ValidationContext:
    fleet: FleetState
    authorizer: Authorizer
    config: AdmissionConfig = field(default_factory=load_config)
    probes: Optional[ProbeFactory] = None
    deadline: Optional[float] = None

    def __post_init__(self) -> None:
        if self.probes is None:
            self.probes = probe_factory(self.config)
        if self.deadline is None:
            self.deadline = time.monotonic() + self.config.request_timeout_seconds
        # Fleet calls made on behalf of this request share its deadline.
        if isinstance(self.fleet, DeadlineAware):
            self.fleet = self.fleet.with_deadline(self.remaining)

    def remaining(self) -> float:
        if self.deadline is None:
            return self.config.request_timeout_seconds
        return self.deadline - time.monotonic()

    def check_deadline(self) -> None:
        if self.remaining() <= 0:
            raise ValidationTimeout()

    def lookup(self, call: Callable[[], T], *, kind: str, name: str) -> T:
        """Run a fleet lookup; not-found becomes a kind-specific validation error."""
        self.check_deadline()
        try:
            return call()
        except NotFoundError as e:
            raise ValidationExternalState(f"{kind} {name} does not exist", kind=kind, name=name) from e

    def require(self, subject: str, resource: str, action: str, obj: str) -> None:
        self.check_deadline()
        if not self.authorizer.enforce(subject, resource, action, obj):
            raise AuthorizationDenied()

    def probe(self, target: StorageTarget) -> None:
        self.check_deadline()
        probe = self.probes(target.type)  # type: ignore[misc]
        timeout = max(0.1, min(self.config.probe_timeout_seconds, self.remaining()))
        try:
            probe.check(target, timeout=timeout)
        except ExternalProbeFailure:
            if self.remaining() <= 0:
                raise ValidationTimeout("storage probe did not complete before the request deadline")
            raise
