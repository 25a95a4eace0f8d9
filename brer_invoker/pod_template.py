"""brer_invoker.pod_template — Pod manifest for one Invocation.

Identity fields are copied verbatim from the Invocation; the pod name doubles
as the creation idempotency key. Secret env entries stay references and are
never resolved here.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from brer_invoker.config import ResourceDefaults

__all__ = [
    "FINALIZER",
    "MANAGED_BY",
    "build_env",
    "build_pod_template",
    "build_resources",
    "serialize_image",
]

MANAGED_BY = "brer.io"
FINALIZER = "brer.io/invocation-protection"
CONTAINER_NAME = "job"


def serialize_image(image: Dict[str, Any]) -> str:
    return f"{image['host']}/{image['name']}:{image['tag']}"


def build_env(api_url: str, invocation: Dict[str, Any], token: str) -> List[Dict[str, Any]]:
    env: List[Dict[str, Any]] = [
        {"name": "BRER_URL", "value": api_url},
        {"name": "BRER_TOKEN", "value": token},
        {"name": "BRER_INVOCATION_ID", "value": invocation["ulid"]},
    ]
    if invocation.get("runtimeTest"):
        env.append({"name": "BRER_MODE", "value": "test"})

    for item in invocation.get("env") or []:
        if item.get("secretKey"):
            env.append(
                {
                    "name": item["name"],
                    "valueFrom": {
                        "secretKeyRef": {
                            "name": item.get("secretName"),
                            "key": item["secretKey"],
                        },
                    },
                }
            )
        else:
            env.append({"name": item["name"], "value": item.get("value")})
    return env


def _group(cpu: Optional[str], memory: Optional[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    if cpu:
        out["cpu"] = cpu
    if memory:
        out["memory"] = memory
    return out


def build_resources(
    declared: Optional[Dict[str, Any]],
    defaults: Optional[ResourceDefaults] = None,
) -> Dict[str, Dict[str, str]]:
    """Merge declared requests/limits with operator fallbacks, omitting empty groups."""
    declared = declared or {}
    defaults = defaults or ResourceDefaults()
    requests = declared.get("requests") or {}
    limits = declared.get("limits") or {}

    resources: Dict[str, Dict[str, str]] = {}
    request_group = _group(
        requests.get("cpu") or defaults.cpu_request,
        requests.get("memory") or defaults.memory_request,
    )
    if request_group:
        resources["requests"] = request_group
    limit_group = _group(
        limits.get("cpu") or defaults.cpu_limit,
        limits.get("memory") or defaults.memory_limit,
    )
    if limit_group:
        resources["limits"] = limit_group
    return resources


def build_pod_template(
    api_url: str,
    invocation: Dict[str, Any],
    token: str,
    image_pull_secrets: Iterable[str] = (),
    resource_defaults: Optional[ResourceDefaults] = None,
) -> Dict[str, Any]:
    image = invocation["image"]
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": invocation["pod"],
            "labels": {
                "app.kubernetes.io/managed-by": MANAGED_BY,
                "brer.io/function-name": invocation["functionName"],
                "brer.io/invocation-ulid": invocation["ulid"],
                "brer.io/project": invocation["project"],
            },
            "finalizers": [FINALIZER],
        },
        "spec": {
            "automountServiceAccountToken": False,
            "restartPolicy": "Never",
            "containers": [
                {
                    "name": CONTAINER_NAME,
                    "image": serialize_image(image),
                    "imagePullPolicy": "Always" if image.get("tag") == "latest" else "IfNotPresent",
                    "env": build_env(api_url, invocation, token),
                    "resources": build_resources(invocation.get("resources"), resource_defaults),
                },
            ],
            "imagePullSecrets": [{"name": name} for name in image_pull_secrets],
        },
    }
