"""Resource catalog derived from the API description.

Built once at process start:
- path items tagged with `x-resource-kind` map their (normalized) route to a
  protected resource kind
- untagged path items land in the enforcement-exempt list
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

import yaml

from admission.core.errors import EvaluationError
from admission.rbac import ACTION_CREATE, ACTION_DELETE, ACTION_READ, ACTION_UPDATE

logger = logging.getLogger(__name__)

RESOURCE_KIND_EXTENSION = "x-resource-kind"

DEFAULT_API_SPEC_PATH = Path(__file__).resolve().parent.parent / "data" / "openapi.yaml"

ACTION_METHOD_MAP: Dict[str, str] = {
    "GET": ACTION_READ,
    "POST": ACTION_CREATE,
    "PUT": ACTION_UPDATE,
    "PATCH": ACTION_UPDATE,
    "DELETE": ACTION_DELETE,
}


def action_for_method(method: str) -> str:
    action = ACTION_METHOD_MAP.get((method or "").upper())
    if action is None:
        raise EvaluationError("invalid method")
    return action


def normalize_endpoint(endpoint: str, base_path: str = "") -> str:
    """
    Convert an API description path into router notation.

    Example: '/namespaces/{namespace}/clusters' -> '/v1/namespaces/:namespace/clusters'
    """
    parsed = endpoint.replace("{", ":").replace("}", "")
    return f"{base_path}{parsed}"


@dataclass(frozen=True)
class ResourceCatalog:
    paths: Mapping[str, str] = field(default_factory=dict)
    skip_paths: Tuple[str, ...] = ()

    @property
    def resources(self) -> FrozenSet[str]:
        return frozenset(self.paths.values())

    def resource_for(self, route: str) -> Optional[str]:
        return self.paths.get(route)

    def is_exempt(self, route: str) -> bool:
        return route in self.skip_paths

    def resolve(self, route: str, method: str) -> Tuple[str, str]:
        """Return (resource kind, action) for a protected route + HTTP method."""
        resource = self.paths.get(route)
        if resource is None:
            raise EvaluationError("invalid URL")
        return resource, action_for_method(method)


def load_api_spec(path: Optional[str | Path] = None) -> Dict[str, Any]:
    p = Path(path) if path else DEFAULT_API_SPEC_PATH
    with p.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"API description at {p} is not a mapping")
    return data


def build_catalog(api_spec: Mapping[str, Any], base_path: str = "") -> ResourceCatalog:
    paths: Dict[str, str] = {}
    skip: List[str] = []
    for endpoint, item in (api_spec.get("paths") or {}).items():
        route = normalize_endpoint(str(endpoint), base_path)
        kind = item.get(RESOURCE_KIND_EXTENSION) if isinstance(item, dict) else None
        if isinstance(kind, str) and kind:
            paths[route] = kind
            continue
        skip.append(route)
    logger.info(f"Resource catalog built: {len(paths)} protected routes, {len(skip)} exempt routes")
    return ResourceCatalog(paths=paths, skip_paths=tuple(sorted(skip)))


def load_catalog(path: Optional[str | Path] = None, base_path: str = "") -> ResourceCatalog:
    return build_catalog(load_api_spec(path), base_path=base_path)
