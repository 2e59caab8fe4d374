from __future__ import annotations

import pytest

from admission.config import AdmissionConfig
from admission.controller import AdmissionController, AdmissionRequest, kind_for
from admission.core.errors import (
    AuthenticationMissing,
    AuthorizationDenied,
    ValidationBusinessRule,
    ValidationStructural,
)
from admission.core.models import ObjectKind
from admission.rbac.adapter import StaticPolicySource
from admission.rbac.catalog import load_catalog
from admission.rbac.enforcer import Enforcer
from admission.rbac.store import PolicyStore

POLICY = """
p, role:storage-admin, backup-storages, *, dev/*
p, role:storage-admin, database-engines, update, dev/*
g, bob, role:storage-admin
p, carol, backup-storages, read, dev/*
p, dave, database-clusters, *, dev/*
"""

STORAGES = "/v1/namespaces/:namespace/backup-storages"
STORAGE = "/v1/namespaces/:namespace/backup-storages/:name"
UPGRADE = "/v1/namespaces/:namespace/database-engines/:name/operator-version/upgrade"
CLUSTER = "/v1/namespaces/:namespace/database-clusters/:name"


@pytest.fixture
def controller(fleet, probe):  # type: ignore[no-untyped-def]
    store = PolicyStore(StaticPolicySource(POLICY), load_catalog(base_path="/v1"))
    store.load()
    return AdmissionController(Enforcer(store), fleet, config=AdmissionConfig(), probes=lambda _t: probe)


def _storage_payload(**kw):  # type: ignore[no-untyped-def]
    payload = {
        "name": "s3-new",
        "type": "s3",
        "bucketName": "fresh-bucket",
        "region": "us-east-1",
        "accessKey": "AK",
        "secretKey": "SK",
    }
    payload.update(kw)
    return payload


def test_exempt_route_needs_no_subject(controller) -> None:  # type: ignore[no-untyped-def]
    decision = controller.admit(AdmissionRequest(route="/v1/version", method="GET"))
    assert decision.allowed is True
    assert decision.resource == ""


def test_protected_route_without_subject(controller) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(AuthenticationMissing):
        controller.admit(AdmissionRequest(route=STORAGES, method="GET", namespace="dev"))


def test_denied_request_is_generic(controller) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(AuthorizationDenied) as ei:
        controller.admit(AdmissionRequest(route=STORAGES, method="POST", subject="carol", namespace="dev"))
    assert "carol" not in str(ei.value)


def test_read_is_authorized_without_validation(controller, probe) -> None:  # type: ignore[no-untyped-def]
    decision = controller.admit(
        AdmissionRequest(route=STORAGE, method="GET", subject="carol", namespace="dev", name="s3-a")
    )
    assert decision.allowed is True
    assert (decision.resource, decision.action) == ("backup-storages", "read")
    assert probe.targets == []


def test_create_runs_validation(controller, probe) -> None:  # type: ignore[no-untyped-def]
    decision = controller.admit(
        AdmissionRequest(route=STORAGES, method="POST", subject="bob", namespace="dev", payload=_storage_payload())
    )
    assert (decision.resource, decision.action) == ("backup-storages", "create")
    assert [t.bucket for t in probe.targets] == ["fresh-bucket"]


def test_invalid_payload_is_rejected_after_authorization(controller) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationStructural):
        controller.admit(
            AdmissionRequest(
                route=STORAGES,
                method="POST",
                subject="bob",
                namespace="dev",
                payload=_storage_payload(name="Not_Valid"),
            )
        )


def test_operator_upgrade_route_validates_target_version(controller) -> None:  # type: ignore[no-untyped-def]
    assert kind_for(UPGRADE, "database-engines") is ObjectKind.OPERATOR_UPGRADE
    with pytest.raises(ValidationStructural, match="target version"):
        controller.admit(
            AdmissionRequest(
                route=UPGRADE,
                method="PUT",
                subject="bob",
                namespace="dev",
                name="percona-xtradb-cluster-operator",
                payload={"targetVersion": "not-a-version"},
            )
        )


def test_identity_resolver_supplies_subject(fleet, probe) -> None:  # type: ignore[no-untyped-def]
    class _Identity:
        def subject_of(self, request: AdmissionRequest):  # type: ignore[no-untyped-def]
            return "carol"

    store = PolicyStore(StaticPolicySource(POLICY), load_catalog(base_path="/v1"))
    store.load()
    controller = AdmissionController(
        Enforcer(store), fleet, config=AdmissionConfig(), probes=lambda _t: probe, identity=_Identity()
    )
    decision = controller.admit(AdmissionRequest(route=STORAGES, method="GET", namespace="dev"))
    assert decision.allowed is True


def _cluster_payload(replicas: int):  # type: ignore[no-untyped-def]
    return {
        "metadata": {"name": "db-1", "namespace": "dev"},
        "spec": {
            "engine": {
                "type": "pxc",
                "version": "8.0.36",
                "replicas": replicas,
                "resources": {"cpu": "1", "memory": "1G"},
                "storage": {"size": "10G"},
            },
            "proxy": {"type": "haproxy"},
        },
    }


def test_update_with_stored_cluster_as_raw_dict(controller, fleet) -> None:  # type: ignore[no-untyped-def]
    fleet.add_engine("dev", "pxc", available=["8.0.36"])
    request = AdmissionRequest(
        route=CLUSTER,
        method="PUT",
        subject="dave",
        namespace="dev",
        name="db-1",
        payload=_cluster_payload(replicas=1),
        existing=_cluster_payload(replicas=3),
    )
    with pytest.raises(ValidationBusinessRule, match="cannot scale down 3 node cluster to 1"):
        controller.admit(request)

    request.payload = _cluster_payload(replicas=3)
    decision = controller.admit(request)
    assert (decision.resource, decision.action) == ("database-clusters", "update")
