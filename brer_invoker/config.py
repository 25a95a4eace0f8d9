"""brer_invoker.config — Settings, protocol constants and logging setup.

Every option the invoker recognises is read once from the environment by
``Settings.from_env`` and frozen. Nothing else in the package reads
``os.environ`` for configuration.

Environment variables:
    API_URL                     Invocation store base URL (required)
    JWT_SECRET                  inline HMAC secret
    JWT_PRIVATE_KEY             PKCS8 PEM file path (RSA)
    JWT_PRIVATE_KEY_SECRET_ID   Secrets Manager id holding a PKCS8 PEM
    SECRETS_REGION              default: us-west-2
    MAX_ACTIVE_INVOCATIONS      default: 10 (max 100)
    INVOKE_TIMEOUT              pass interval seconds, default: 10
    SHUTDOWN_GRACE_SECONDS      default: 10
    HTTP_TIMEOUT_SECONDS        default: 10
    K8S_FILE / K8S_YAML / K8S_NAMESPACE / K8S_CONTEXT / K8S_CLUSTER / K8S_USER
    K8S_PULL_SECRETS            comma-separated
    K8S_CPU_REQUEST / K8S_MEMORY_REQUEST / K8S_CPU_LIMIT / K8S_MEMORY_LIMIT
    LOG_LEVEL / LOG_FILE / LOG_PRETTY
"""

from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from brer_invoker.errors import ConfigurationError

__all__ = [
    "INITIALIZING_GRACE_SECONDS",
    "INVOKER_TOKEN_TTL_SECONDS",
    "MAX_ACTIVE_INVOCATIONS_LIMIT",
    "TIMEOUT_REASON",
    "TOKEN_AUDIENCE",
    "TOKEN_ISSUER",
    "KubernetesOptions",
    "ResourceDefaults",
    "Settings",
    "configure_logging",
]

# ---------------------------------------------------------------------------
# Protocol constants
# ---------------------------------------------------------------------------

TOKEN_ISSUER = "brer.io/invoker"
TOKEN_AUDIENCE = "brer.io/api"
INVOKER_TOKEN_TTL_SECONDS = 30

# An initializing pod that never reached "running" in this window is assumed dead
INITIALIZING_GRACE_SECONDS = 600
TIMEOUT_REASON = "timed out"

MAX_ACTIVE_INVOCATIONS_LIMIT = 100


def _parse_csv(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(token.strip() for token in value.split(",") if token.strip())


def _positive_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw in (None, ""):
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ConfigurationError(f"{name} should be a positive integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} should be a positive integer, got {raw!r}")
    return value


def _optional(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = str(environ.get(name) or "").strip()
    return value or None


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KubernetesOptions:
    file: Optional[str] = None
    yaml: Optional[str] = None
    namespace: Optional[str] = None
    context: Optional[str] = None
    cluster: Optional[str] = None
    user: Optional[str] = None


@dataclass(frozen=True)
class ResourceDefaults:
    """Fallback pod resources used when an Invocation declares none."""

    cpu_request: Optional[str] = None
    memory_request: Optional[str] = None
    cpu_limit: Optional[str] = None
    memory_limit: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    api_url: str
    jwt_secret: Optional[str] = None
    jwt_private_key: Optional[str] = None
    jwt_private_key_secret_id: Optional[str] = None
    secrets_region: str = "us-west-2"
    max_active_invocations: int = 10
    invoke_interval: int = 10
    shutdown_grace_seconds: int = 10
    http_timeout_seconds: int = 10
    kubernetes: KubernetesOptions = field(default_factory=KubernetesOptions)
    image_pull_secrets: Tuple[str, ...] = ()
    resources: ResourceDefaults = field(default_factory=ResourceDefaults)
    log_level: str = "DEBUG"
    log_file: Optional[str] = None
    log_pretty: bool = False

    def __post_init__(self) -> None:
        if not self.api_url:
            raise ConfigurationError("Expected API server URL")
        if not 0 < self.max_active_invocations <= MAX_ACTIVE_INVOCATIONS_LIMIT:
            raise ConfigurationError(
                f"Unsupported active Invocations value: {self.max_active_invocations} "
                f"(1..{MAX_ACTIVE_INVOCATIONS_LIMIT})"
            )
        for name in ("invoke_interval", "shutdown_grace_seconds", "http_timeout_seconds"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} should be a positive integer")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            api_url=str(env.get("API_URL") or "").strip(),
            jwt_secret=env.get("JWT_SECRET") or None,
            jwt_private_key=_optional(env, "JWT_PRIVATE_KEY"),
            jwt_private_key_secret_id=_optional(env, "JWT_PRIVATE_KEY_SECRET_ID"),
            secrets_region=_optional(env, "SECRETS_REGION") or "us-west-2",
            max_active_invocations=_positive_int(env, "MAX_ACTIVE_INVOCATIONS", 10),
            invoke_interval=_positive_int(env, "INVOKE_TIMEOUT", 10),
            shutdown_grace_seconds=_positive_int(env, "SHUTDOWN_GRACE_SECONDS", 10),
            http_timeout_seconds=_positive_int(env, "HTTP_TIMEOUT_SECONDS", 10),
            kubernetes=KubernetesOptions(
                file=_optional(env, "K8S_FILE"),
                yaml=env.get("K8S_YAML") or None,
                namespace=_optional(env, "K8S_NAMESPACE"),
                context=_optional(env, "K8S_CONTEXT"),
                cluster=_optional(env, "K8S_CLUSTER"),
                user=_optional(env, "K8S_USER"),
            ),
            image_pull_secrets=_parse_csv(env.get("K8S_PULL_SECRETS")),
            resources=ResourceDefaults(
                cpu_request=_optional(env, "K8S_CPU_REQUEST"),
                memory_request=_optional(env, "K8S_MEMORY_REQUEST"),
                cpu_limit=_optional(env, "K8S_CPU_LIMIT"),
                memory_limit=_optional(env, "K8S_MEMORY_LIMIT"),
            ),
            log_level=(_optional(env, "LOG_LEVEL") or "DEBUG").upper(),
            log_file=_optional(env, "LOG_FILE"),
            log_pretty=str(env.get("LOG_PRETTY") or "").strip().lower() == "enable",
        )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

_PRETTY_FORMAT = "%(asctime)s %(levelname)-5s %(name)s: %(message)s"


class _JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["err"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(
    level: str = "DEBUG",
    log_file: Optional[str] = None,
    pretty: bool = False,
) -> logging.Logger:
    """Install a single handler on the ``brer_invoker`` logger and return it."""
    logger = logging.getLogger("brer_invoker")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(log_file)
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_PRETTY_FORMAT) if pretty else _JsonFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, str(level).upper(), logging.DEBUG))
    logger.propagate = False
    return logger
