"""Read-only policy sources and the rule-engine adapter on top of them.

The system of record for policy lives outside this process (a ConfigMap or a
file managed by configuration management). Every mutation entry point of the
adapter raises `UnsupportedOperation` so in-process state can never drift
from that record.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, runtime_checkable

from casbin import persist

from admission.core.errors import PolicyMalformed, UnsupportedOperation

logger = logging.getLogger(__name__)

POLICY_KEY = "policy.csv"
ENABLED_KEY = "enabled"
ENABLED_VALUE_TRUE = "true"


@dataclass(frozen=True)
class PolicyDocument:
    """One consistent read of the policy source."""

    policy: str
    enabled: bool


@runtime_checkable
class PolicySource(Protocol):
    def read(self) -> PolicyDocument: ...


def policy_lines(text: str) -> List[str]:
    """Return the non-blank, non-comment lines of a policy document."""
    out: List[str] = []
    for raw in (text or "").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        out.append(line)
    return out


class StaticPolicySource:
    """In-memory source (embedding, tests, one-shot checks)."""

    def __init__(self, policy: str = "", *, enabled: bool = True) -> None:
        self._lock = threading.Lock()
        self._doc = PolicyDocument(policy=policy, enabled=enabled)

    def replace(self, policy: str, *, enabled: Optional[bool] = None) -> None:
        # Simulates an out-of-band edit of the system of record.
        with self._lock:
            self._doc = PolicyDocument(policy=policy, enabled=self._doc.enabled if enabled is None else enabled)

    def read(self) -> PolicyDocument:
        with self._lock:
            return self._doc


class FilePolicySource:
    """Policy file on disk. Enforcement is always on for file-backed policy."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read(self) -> PolicyDocument:
        # OSError propagates: a missing or unreadable file is a read failure, not a bad policy.
        return PolicyDocument(policy=self.path.read_text(encoding="utf-8"), enabled=True)


class ConfigMapPolicySource:
    """Policy stored under `policy.csv` of a ConfigMap; `enabled: "true"` turns enforcement on."""

    def __init__(self, namespace: str, name: str, core_v1=None) -> None:  # type: ignore[no-untyped-def]
        self.namespace = namespace
        self.name = name
        self._core_v1 = core_v1

    def _api(self):  # type: ignore[no-untyped-def]
        if self._core_v1 is None:
            from admission.providers.fleet import get_core_v1

            self._core_v1 = get_core_v1()
        return self._core_v1

    def read(self) -> PolicyDocument:
        cm = self._api().read_namespaced_config_map(name=self.name, namespace=self.namespace)
        data = getattr(cm, "data", None) or {}
        if POLICY_KEY not in data:
            raise PolicyMalformed(f"{POLICY_KEY} not found in ConfigMap {self.namespace}/{self.name}")
        return PolicyDocument(
            policy=data.get(POLICY_KEY) or "",
            enabled=(data.get(ENABLED_KEY) or "") == ENABLED_VALUE_TRUE,
        )


class ReadOnlyAdapter(persist.Adapter):
    """Rule-engine adapter over a single, already-read policy document."""

    def __init__(self, document: PolicyDocument) -> None:
        self.document = document

    def load_policy(self, model):  # type: ignore[no-untyped-def]
        for line in policy_lines(self.document.policy):
            persist.load_policy_line(line, model)

    def save_policy(self, model):  # type: ignore[no-untyped-def]
        raise UnsupportedOperation("policy source is read-only: save is not supported")

    def add_policy(self, sec, ptype, rule):  # type: ignore[no-untyped-def]
        raise UnsupportedOperation("policy source is read-only: add is not supported")

    def remove_policy(self, sec, ptype, rule):  # type: ignore[no-untyped-def]
        raise UnsupportedOperation("policy source is read-only: remove is not supported")

    def remove_filtered_policy(self, sec, ptype, field_index, *field_values):  # type: ignore[no-untyped-def]
        raise UnsupportedOperation("policy source is read-only: remove is not supported")
