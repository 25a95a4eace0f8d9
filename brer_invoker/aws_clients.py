"""brer_invoker.aws_clients — Lazy-singleton AWS service clients.

Only Secrets Manager is used, to fetch the signing key when it is stored there
instead of on disk. The client is built on first use so deployments that sign
with a local key never need AWS credentials.
"""

from __future__ import annotations

from typing import Optional

import boto3
from botocore.config import Config

__all__ = ["_get_secretsmanager", "_reset_clients"]

_secretsmanager = None


def _get_secretsmanager(region: Optional[str] = None):
    """Get (or create) the Secrets Manager client singleton."""
    global _secretsmanager
    if _secretsmanager is None:
        _secretsmanager = boto3.client(
            "secretsmanager",
            region_name=region or "us-west-2",
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )
    return _secretsmanager


def _reset_clients() -> None:
    global _secretsmanager
    _secretsmanager = None
