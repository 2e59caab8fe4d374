from __future__ import annotations

import pytest


def test_load_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    from admission.config import load_config

    for var in (
        "ADMISSION_DEBUG",
        "ADMISSION_POLICY_FILE",
        "ADMISSION_API_BASE_PATH",
        "ADMISSION_PROBE_TIMEOUT_SECONDS",
        "ADMISSION_REQUEST_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(var, raising=False)
    cfg = load_config()
    assert cfg.debug is False
    assert cfg.system_namespace == "everest-system"
    assert cfg.rbac_configmap_name == "everest-rbac"
    assert cfg.policy_file is None
    assert cfg.api_base_path == "/v1"
    assert cfg.admin_role == "role:admin"
    assert cfg.probe_timeout_seconds == 2.0
    assert cfg.request_timeout_seconds == 10.0


def test_load_config_parses_and_clamps(monkeypatch: pytest.MonkeyPatch) -> None:
    from admission.config import load_config

    monkeypatch.setenv("ADMISSION_DEBUG", "yes")
    monkeypatch.setenv("ADMISSION_POLICY_FILE", " /etc/admission/policy.csv ")
    monkeypatch.setenv("ADMISSION_API_BASE_PATH", "/api/v2/")
    monkeypatch.setenv("ADMISSION_PROBE_TIMEOUT_SECONDS", "0.01")
    monkeypatch.setenv("ADMISSION_REQUEST_TIMEOUT_SECONDS", "9999")
    cfg = load_config()
    assert cfg.debug is True
    assert cfg.policy_file == "/etc/admission/policy.csv"
    assert cfg.api_base_path == "/api/v2"
    assert cfg.probe_timeout_seconds == 0.5
    assert cfg.request_timeout_seconds == 120.0


def test_load_config_ignores_garbage_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    from admission.config import load_config

    monkeypatch.setenv("ADMISSION_PROBE_TIMEOUT_SECONDS", "fast")
    assert load_config().probe_timeout_seconds == 2.0
