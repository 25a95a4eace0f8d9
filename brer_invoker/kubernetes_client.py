"""brer_invoker.kubernetes_client — Kube config loading and the pod adapter.

Only two API calls are needed: read a pod by name and create a pod. Their
status codes are classified here so the reconciliation pass branches on
``None`` / ``CreateOutcome`` instead of raw API errors:

    read   404 -> None
    create 409 -> CreateOutcome.ALREADY_EXISTS
    other      -> OrchestratorUnavailable
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import urllib3
import yaml
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from brer_invoker.config import KubernetesOptions
from brer_invoker.errors import ConfigurationError, OrchestratorUnavailable

__all__ = [
    "CreateOutcome",
    "KubernetesClient",
    "setup_kubernetes",
]

logger = logging.getLogger(__name__)

_SERVICE_ACCOUNT_NAMESPACE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
_IN_CLUSTER_CONTEXT = {
    "name": "inCluster",
    "context": {"cluster": "inCluster", "user": "inCluster"},
}

_TRANSPORT_ERRORS = (urllib3.exceptions.HTTPError, OSError)


class CreateOutcome(enum.Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


@dataclass(frozen=True)
class KubernetesClient:
    """Pod adapter bound to one namespace."""

    api: Any
    namespace: str
    context: str = ""

    def read_pod(self, name: str) -> Optional[Any]:
        """Return the pod named ``name`` or ``None`` when it does not exist."""
        try:
            return self.api.read_namespaced_pod(name, self.namespace)
        except ApiException as exc:
            if exc.status == 404:
                return None
            raise OrchestratorUnavailable(
                f"Reading pod {name} failed ({exc.status}): {exc.reason}",
                status_code=exc.status,
            ) from exc
        except _TRANSPORT_ERRORS as exc:
            raise OrchestratorUnavailable(f"Reading pod {name} failed: {exc}") from exc

    def create_pod(self, body: Dict[str, Any]) -> CreateOutcome:
        name = str((body.get("metadata") or {}).get("name") or "")
        try:
            self.api.create_namespaced_pod(self.namespace, body)
        except ApiException as exc:
            if exc.status == 409:
                logger.debug("pod %s already created", name)
                return CreateOutcome.ALREADY_EXISTS
            raise OrchestratorUnavailable(
                f"Creating pod {name} failed ({exc.status}): {exc.reason}",
                status_code=exc.status,
            ) from exc
        except _TRANSPORT_ERRORS as exc:
            raise OrchestratorUnavailable(f"Creating pod {name} failed: {exc}") from exc
        return CreateOutcome.CREATED


# ---------------------------------------------------------------------------
# Kube config loading
# ---------------------------------------------------------------------------


def _get_context(contexts: List[Dict[str, Any]], options: KubernetesOptions) -> Optional[Dict[str, Any]]:
    """First context matching every configured selector."""
    for item in contexts or []:
        if not isinstance(item, dict):
            continue
        detail = item.get("context") or {}
        if options.context and item.get("name") != options.context:
            continue
        if options.cluster and detail.get("cluster") != options.cluster:
            continue
        if options.user and detail.get("user") != options.user:
            continue
        return item
    return None


def _in_cluster_namespace() -> Optional[str]:
    try:
        with open(_SERVICE_ACCOUNT_NAMESPACE, "r", encoding="utf-8") as handle:
            return handle.read().strip() or None
    except OSError:
        return None


def _load_configuration(options: KubernetesOptions, configuration: Any) -> Dict[str, Any]:
    """Load credentials into ``configuration`` and return the selected context."""
    if options.yaml:
        try:
            document = yaml.safe_load(options.yaml) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid inline Kubeconfig: {exc}") from exc
        if not isinstance(document, dict) or not isinstance(document.get("contexts") or [], list):
            raise ConfigurationError("Invalid inline Kubeconfig")
        context = _get_context(document.get("contexts") or [], options)
        if not context:
            raise ConfigurationError("Empty Kubeconfig")
        k8s_config.load_kube_config_from_dict(
            document,
            context=context["name"],
            client_configuration=configuration,
        )
        return context

    if not options.file and os.environ.get("KUBERNETES_SERVICE_HOST"):
        k8s_config.load_incluster_config(client_configuration=configuration)
        context = _get_context([_IN_CLUSTER_CONTEXT], options)
        if not context:
            raise ConfigurationError("Empty Kubeconfig")
        namespace = _in_cluster_namespace()
        if namespace:
            context = {**context, "context": {**context["context"], "namespace": namespace}}
        return context

    contexts, _active = k8s_config.list_kube_config_contexts(config_file=options.file)
    context = _get_context(contexts, options)
    if not context:
        raise ConfigurationError("Empty Kubeconfig")
    k8s_config.load_kube_config(
        config_file=options.file,
        context=context["name"],
        client_configuration=configuration,
    )
    return context


def setup_kubernetes(options: Optional[KubernetesOptions] = None) -> KubernetesClient:
    """Build the pod adapter.

    Source order: inline YAML, config file, in-cluster service account
    (``KUBERNETES_SERVICE_HOST``), default kubeconfig. Namespace order:
    option, context namespace, ``KUBERNETES_NAMESPACE``, ``default``.
    """
    options = options or KubernetesOptions()
    configuration = k8s_client.Configuration()
    try:
        context = _load_configuration(options, configuration)
    except (ConfigException, OSError) as exc:
        raise ConfigurationError(f"Unable to load Kubeconfig: {exc}") from exc

    namespace = (
        options.namespace
        or (context.get("context") or {}).get("namespace")
        or os.environ.get("KUBERNETES_NAMESPACE")
        or "default"
    )
    api = k8s_client.CoreV1Api(k8s_client.ApiClient(configuration))
    logger.debug("kubernetes context %s, namespace %s", context.get("name"), namespace)
    return KubernetesClient(api=api, namespace=namespace, context=str(context.get("name") or ""))
