"""brer_invoker.store_client — Authenticated HTTP access to the Invocation store.

Routes used:
    GET /api/v1/invocations?direction=asc&limit=<n>&status=active
    PUT /api/v1/invocations/{ulid}      (if-match: <_rev>)
"""

from __future__ import annotations

import http.client
import json
import logging
import os
import ssl
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional, Tuple

from brer_invoker import __version__
from brer_invoker.auth import TokenKey, sign_invoker_token, sign_pod_token
from brer_invoker.config import TIMEOUT_REASON
from brer_invoker.errors import ConfigurationError, StoreUnavailable, StoreUpdateFailed

__all__ = [
    "INVOCATIONS_PATH",
    "StoreClient",
    "create_store_client",
]

logger = logging.getLogger(__name__)

INVOCATIONS_PATH = "/api/v1/invocations"
HTTP_USER_AGENT = f"brer-invoker/{__version__}"

_TRANSPORT_ERRORS = (urllib.error.URLError, http.client.HTTPException, OSError)


def _build_ssl_context() -> Optional[ssl.SSLContext]:
    """Build an SSL context with certifi fallback for reliable HTTPS calls."""
    cert_file = str(os.environ.get("SSL_CERT_FILE", "") or "").strip()
    if cert_file:
        try:
            return ssl.create_default_context(cafile=cert_file)
        except (OSError, ssl.SSLError) as exc:
            logger.warning("SSL_CERT_FILE %r is not usable: %s", cert_file, exc)

    try:
        import certifi

        return ssl.create_default_context(cafile=certifi.where())
    except (ImportError, OSError, ssl.SSLError):
        return ssl.create_default_context()


class StoreClient:
    """Invocation store adapter shared (read-only) by every reconciliation pass."""

    def __init__(
        self,
        base_url: str,
        token_key: TokenKey,
        timeout: float = 10,
        ssl_context: Optional[ssl.SSLContext] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_key = token_key
        self.timeout = timeout
        self.ssl_context = ssl_context

    def _headers(self, token: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "User-Agent": HTTP_USER_AGENT,
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        query: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, Any]:
        """Send one request and return ``(status, decoded_body)``.

        Non-2xx answers are returned, not raised. Transport errors, including
        a body cut short mid-read, propagate as one of ``_TRANSPORT_ERRORS``.
        A body that is not valid UTF-8 JSON comes back as text.
        """
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{urllib.parse.urlencode(query)}"
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = urllib.request.Request(
            url=url,
            method=method,
            headers=self._headers(token, headers),
            data=body,
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout, context=self.ssl_context) as resp:
                status = resp.status
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as exc:
            status = exc.code
            raw = exc.read().decode("utf-8", errors="replace") if exc.fp is not None else ""
        try:
            data = json.loads(raw) if raw else None
        except json.JSONDecodeError:
            data = raw
        return status, data

    def list_candidates(self, max_count: int) -> List[Dict[str, Any]]:
        """Return up to ``max_count`` active Invocations, oldest first."""
        # TODO: cache the invoker token until shortly before it expires
        token = sign_invoker_token(self.token_key)
        try:
            status, data = self._request(
                "GET",
                INVOCATIONS_PATH,
                token.raw,
                query={
                    "direction": "asc",  # by creation date
                    "limit": max_count,
                    "status": "active",
                },
            )
        except _TRANSPORT_ERRORS as exc:
            raise StoreUnavailable(f"Invocations list request failed: {exc}") from exc

        if status != 200:
            raise StoreUnavailable(f"Invocations list returned status code {status}", status_code=status)
        if not isinstance(data, dict) or not isinstance(data.get("invocations"), list):
            raise StoreUnavailable("Invocations list returned an unexpected body", status_code=status)
        return data["invocations"]

    def report_timeout(self, invocation: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the whole Invocation with a ``failed`` copy.

        Signed as the Invocation's own pod, the only identity allowed to
        finalize it. Returns the document sent.
        """
        ulid = str(invocation.get("ulid") or "")
        token = sign_pod_token(self.token_key, str(invocation.get("pod") or ""))
        document = {
            **invocation,
            "status": "failed",
            "reason": TIMEOUT_REASON,
        }
        try:
            status, _ = self._request(
                "PUT",
                f"{INVOCATIONS_PATH}/{urllib.parse.quote(ulid, safe='')}",
                token.raw,
                payload=document,
                headers={"If-Match": str(invocation.get("_rev") or "invalid_rev")},
            )
        except _TRANSPORT_ERRORS as exc:
            raise StoreUpdateFailed(ulid, f"Invocation {ulid} update request failed: {exc}") from exc

        if status != 200:
            raise StoreUpdateFailed(
                ulid,
                f"Invocation {ulid} update returned status code {status}",
                status_code=status,
            )
        return document


def create_store_client(url: Optional[str], token_key: TokenKey, timeout: float = 10) -> StoreClient:
    if not url:
        raise ConfigurationError("Expected API server URL")
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"Invalid API server URL: {url!r}")
    context = _build_ssl_context() if parsed.scheme == "https" else None
    return StoreClient(url, token_key, timeout=timeout, ssl_context=context)
