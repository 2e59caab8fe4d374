"""Admission gate configuration, read once from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    return (os.getenv(name, "") or "").strip() or default


@dataclass(frozen=True)
class AdmissionConfig:
    # Debug mode stubs storage reachability probes (no real object storage around).
    debug: bool = False

    # Policy source
    system_namespace: str = "everest-system"
    rbac_configmap_name: str = "everest-rbac"
    policy_file: Optional[str] = None

    # Resource catalog
    api_spec_path: Optional[str] = None
    api_base_path: str = "/v1"
    admin_role: str = "role:admin"

    # Timeouts
    probe_timeout_seconds: float = 2.0
    request_timeout_seconds: float = 10.0

    # Fleet lookups
    crd_group: str = "everest.percona.com"
    crd_version: str = "v1alpha1"


@lru_cache(maxsize=1)
def load_config() -> AdmissionConfig:
    """
    Load admission configuration from env (ConfigMap/Secret friendly).

    Recommended vars:
    - ADMISSION_DEBUG=0|1
    - ADMISSION_SYSTEM_NAMESPACE=everest-system
    - ADMISSION_RBAC_CONFIGMAP=everest-rbac
    - ADMISSION_POLICY_FILE=/etc/admission/policy.csv (overrides the ConfigMap)
    - ADMISSION_API_SPEC=/etc/admission/openapi.yaml (default: bundled description)
    - ADMISSION_API_BASE_PATH=/v1
    - ADMISSION_ADMIN_ROLE=role:admin
    - ADMISSION_PROBE_TIMEOUT_SECONDS=2
    - ADMISSION_REQUEST_TIMEOUT_SECONDS=10
    - ADMISSION_CRD_GROUP=everest.percona.com
    - ADMISSION_CRD_VERSION=v1alpha1
    """
    base_path = (os.getenv("ADMISSION_API_BASE_PATH", "/v1") or "").strip().rstrip("/")

    return AdmissionConfig(
        debug=_env_bool("ADMISSION_DEBUG", False),
        system_namespace=_env_str("ADMISSION_SYSTEM_NAMESPACE", "everest-system"),
        rbac_configmap_name=_env_str("ADMISSION_RBAC_CONFIGMAP", "everest-rbac"),
        policy_file=(os.getenv("ADMISSION_POLICY_FILE", "") or "").strip() or None,
        api_spec_path=(os.getenv("ADMISSION_API_SPEC", "") or "").strip() or None,
        api_base_path=base_path,
        admin_role=_env_str("ADMISSION_ADMIN_ROLE", "role:admin"),
        probe_timeout_seconds=max(0.5, min(_env_float("ADMISSION_PROBE_TIMEOUT_SECONDS", 2.0), 30.0)),
        request_timeout_seconds=max(1.0, min(_env_float("ADMISSION_REQUEST_TIMEOUT_SECONDS", 10.0), 120.0)),
        crd_group=_env_str("ADMISSION_CRD_GROUP", "everest.percona.com"),
        crd_version=_env_str("ADMISSION_CRD_VERSION", "v1alpha1"),
    )
