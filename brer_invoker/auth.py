"""brer_invoker.auth — Signing key import and JWT issuance.

Two identities are asserted to the Invocation store:

- the invoker itself (``sign_invoker_token``), re-signed on every store poll
  and valid for 30 seconds;
- a single pod (``sign_pod_token``), subject = pod name, with no expiration
  because the pod authenticates for its whole (unknown) run time.

The JWT algorithm follows the key type: raw bytes sign with HS256, an RSA
private key signs with RS256.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import jwt
from botocore.exceptions import BotoCoreError, ClientError
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from brer_invoker.aws_clients import _get_secretsmanager
from brer_invoker.config import INVOKER_TOKEN_TTL_SECONDS, TOKEN_AUDIENCE, TOKEN_ISSUER
from brer_invoker.errors import ConfigurationError
from brer_invoker.serialization import _utcnow

__all__ = [
    "ALG_ASYMMETRIC",
    "ALG_SYMMETRIC",
    "Token",
    "TokenKey",
    "get_algorithm",
    "import_key",
    "sign_invoker_token",
    "sign_pod_token",
]

logger = logging.getLogger(__name__)

ALG_ASYMMETRIC = "RS256"
ALG_SYMMETRIC = "HS256"

TokenKey = Union[bytes, RSAPrivateKey]


@dataclass(frozen=True)
class Token:
    raw: str
    # Seconds, 0 means no expiration
    expires_in: int
    issued_at: dt.datetime


def get_algorithm(key: TokenKey) -> str:
    if isinstance(key, (bytes, bytearray)):
        return ALG_SYMMETRIC
    if isinstance(key, RSAPrivateKey):
        return ALG_ASYMMETRIC
    raise ConfigurationError(f"Unsupported signing key type: {type(key).__name__}")


# ---------------------------------------------------------------------------
# Key import
# ---------------------------------------------------------------------------


def _load_private_key(pem: Union[str, bytes], source: str) -> RSAPrivateKey:
    data = pem.encode("utf-8") if isinstance(pem, str) else pem
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as exc:
        raise ConfigurationError(f"Invalid private key from {source}: {exc}") from exc
    if not isinstance(key, RSAPrivateKey):
        raise ConfigurationError(f"Private key from {source} is not an RSA key")
    return key


def _read_secret_string(secret_id: str, region: Optional[str] = None) -> str:
    try:
        resp = _get_secretsmanager(region).get_secret_value(SecretId=secret_id)
    except (BotoCoreError, ClientError) as exc:
        raise ConfigurationError(f"Unable to read signing key secret {secret_id!r}: {exc}") from exc
    value = resp.get("SecretString")
    if not value:
        raise ConfigurationError(f"Secret {secret_id!r} has no string value")
    return value


def import_key(
    secret: Optional[str] = None,
    private_key: Optional[str] = None,
    private_key_secret_id: Optional[str] = None,
    region: Optional[str] = None,
) -> TokenKey:
    """Resolve the signing key.

    Precedence: PEM file path, then Secrets Manager id, then inline secret.
    """
    if private_key:
        try:
            with open(private_key, "rb") as handle:
                pem = handle.read()
        except OSError as exc:
            raise ConfigurationError(f"Unable to read private key {private_key!r}: {exc}") from exc
        return _load_private_key(pem, private_key)
    if private_key_secret_id:
        return _load_private_key(
            _read_secret_string(private_key_secret_id, region),
            f"secret {private_key_secret_id!r}",
        )
    if secret:
        return secret.encode("utf-8")
    raise ConfigurationError("Specify JWT secret or certificate")


# ---------------------------------------------------------------------------
# Token signing
# ---------------------------------------------------------------------------


def _encode(key: Optional[TokenKey], claims: Dict[str, Any]) -> str:
    if key is None or (isinstance(key, (bytes, bytearray)) and not key):
        raise ConfigurationError("Missing signing key")
    return jwt.encode(claims, key, algorithm=get_algorithm(key))


def sign_pod_token(key: Optional[TokenKey], pod_name: str) -> Token:
    """Token used to authenticate a pod's requests (no expiration)."""
    issued_at = _utcnow()
    raw = _encode(
        key,
        {
            "iat": int(issued_at.timestamp()),
            "iss": TOKEN_ISSUER,
            "aud": TOKEN_AUDIENCE,
            "sub": pod_name,
        },
    )
    return Token(raw=raw, expires_in=0, issued_at=issued_at)


def sign_invoker_token(key: Optional[TokenKey]) -> Token:
    """Token used to authenticate the invoker's own requests."""
    issued_at = _utcnow()
    iat = int(issued_at.timestamp())
    raw = _encode(
        key,
        {
            "iat": iat,
            "exp": iat + INVOKER_TOKEN_TTL_SECONDS,
            "iss": TOKEN_ISSUER,
            "aud": TOKEN_AUDIENCE,
        },
    )
    return Token(raw=raw, expires_in=INVOKER_TOKEN_TTL_SECONDS, issued_at=issued_at)
