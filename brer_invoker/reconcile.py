"""brer_invoker.reconcile — One reconciliation pass over the active Invocations.

For every candidate, independently and concurrently:

    timed out            -> report the timeout to the store (status "failed")
    status != "pending"  -> ignore, the pod owns the Invocation from here
    pending, no pod      -> create the pod (a 409 means it already exists)

A listing failure aborts the pass before any other call is made. Errors while
reconciling one Invocation are logged with its ulid and never reach siblings.
The pass keeps no state between runs; everything is re-derived from the store.
"""

from __future__ import annotations

import datetime as dt
import enum
import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from brer_invoker.auth import TokenKey, sign_pod_token
from brer_invoker.config import INITIALIZING_GRACE_SECONDS, ResourceDefaults, Settings
from brer_invoker.kubernetes_client import CreateOutcome, KubernetesClient
from brer_invoker.pod_template import build_pod_template
from brer_invoker.serialization import _emit_structured_observability, _parse_iso, _utcnow
from brer_invoker.store_client import StoreClient

__all__ = [
    "Action",
    "PassResult",
    "Reconciler",
    "has_timed_out",
    "last_phase_date",
    "run_one_pass",
]

logger = logging.getLogger(__name__)


class Action(enum.Enum):
    TIMED_OUT = "timed_out"
    IGNORED = "ignored"
    POD_EXISTS = "pod_exists"
    POD_CREATED = "pod_created"
    POD_ALREADY_CREATED = "pod_already_created"
    FAILED = "failed"


@dataclass
class PassResult:
    """Outcome of one pass.

    ``actions`` and ``errors`` are keyed by ulid for lookups. ``outcomes`` has
    one entry per candidate, so counts stay right for duplicate or missing ulids.
    """

    candidates: int = 0
    actions: Dict[str, Action] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    outcomes: List[Action] = field(default_factory=list)

    def record(self, ulid: str, action: Action, error: Optional[str] = None) -> None:
        self.actions[ulid] = action
        self.outcomes.append(action)
        if error is not None:
            self.errors[ulid] = error

    def count(self, action: Action) -> int:
        return sum(1 for value in self.outcomes if value is action)


# ---------------------------------------------------------------------------
# Timeout policy
# ---------------------------------------------------------------------------


def last_phase_date(invocation: Dict[str, Any]) -> Optional[dt.datetime]:
    """Date of the latest phase transition, ``updatedAt`` when there is none."""
    phases = invocation.get("phases") or []
    raw = phases[-1].get("date") if phases else invocation.get("updatedAt")
    if not raw:
        return None
    try:
        return _parse_iso(raw)
    except ValueError:
        logger.warning("invocation %s has an invalid phase date %r", invocation.get("ulid"), raw)
        return None


def _elapsed_seconds(invocation: Dict[str, Any], now: dt.datetime) -> Optional[float]:
    since = last_phase_date(invocation)
    if since is None:
        return None
    return (now - since).total_seconds()


def has_timed_out(invocation: Dict[str, Any], now: Optional[dt.datetime] = None) -> bool:
    """Timeout policy, evaluated fresh on every pass.

    ``initializing`` gets a fixed grace period and ignores the declared
    ``timeout``, which only starts counting once the pod reports ``running``.
    """
    status = invocation.get("status")
    if status not in ("initializing", "running"):
        return False

    now = now or _utcnow()
    elapsed = _elapsed_seconds(invocation, now)
    if elapsed is None:
        return False

    if status == "initializing":
        return elapsed > INITIALIZING_GRACE_SECONDS

    timeout = invocation.get("timeout")
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        return False
    return elapsed >= timeout


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Reconciler:
    """Immutable collaborators of a pass, built once at startup."""

    api_url: str
    store: StoreClient
    kubernetes: KubernetesClient
    token_key: TokenKey
    max_active_invocations: int = 10
    image_pull_secrets: Tuple[str, ...] = ()
    resource_defaults: ResourceDefaults = field(default_factory=ResourceDefaults)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: StoreClient,
        kubernetes: KubernetesClient,
        token_key: TokenKey,
    ) -> "Reconciler":
        return cls(
            api_url=settings.api_url,
            store=store,
            kubernetes=kubernetes,
            token_key=token_key,
            max_active_invocations=settings.max_active_invocations,
            image_pull_secrets=tuple(settings.image_pull_secrets),
            resource_defaults=settings.resources,
        )

    def reconcile_invocation(self, invocation: Dict[str, Any]) -> Action:
        ulid = invocation.get("ulid")

        if has_timed_out(invocation):
            logger.debug("invocation %s timeout", ulid)
            self.store.report_timeout(invocation)
            return Action.TIMED_OUT

        if invocation.get("status") != "pending":
            logger.debug("ignore invocation %s (%s)", ulid, invocation.get("status"))
            return Action.IGNORED

        pod_name = invocation["pod"]
        if self.kubernetes.read_pod(pod_name) is not None:
            return Action.POD_EXISTS

        token = sign_pod_token(self.token_key, pod_name)
        logger.debug("create invocation %s pod %s", ulid, pod_name)
        outcome = self.kubernetes.create_pod(
            build_pod_template(
                self.api_url,
                invocation,
                token.raw,
                image_pull_secrets=self.image_pull_secrets,
                resource_defaults=self.resource_defaults,
            )
        )
        if outcome is CreateOutcome.ALREADY_EXISTS:
            return Action.POD_ALREADY_CREATED
        return Action.POD_CREATED

    def _reconcile_all(self, invocations: Iterable[Dict[str, Any]], result: PassResult) -> None:
        invocations = list(invocations)
        if not invocations:
            return
        with ThreadPoolExecutor(max_workers=min(len(invocations), self.max_active_invocations)) as pool:
            futures = {pool.submit(self.reconcile_invocation, inv): inv for inv in invocations}
            for future in as_completed(futures):
                ulid = str(futures[future].get("ulid") or "")
                try:
                    action = future.result()
                except Exception as exc:
                    logger.error("invocation %s reconciliation failed: %s", ulid, exc)
                    result.record(ulid, Action.FAILED, f"{type(exc).__name__}: {exc}")
                else:
                    result.record(ulid, action)

    def run_one_pass(self) -> PassResult:
        """List candidates and reconcile each; ``StoreUnavailable`` aborts the pass."""
        started = time.monotonic()
        invocations: List[Dict[str, Any]] = self.store.list_candidates(self.max_active_invocations)
        result = PassResult(candidates=len(invocations))
        self._reconcile_all(invocations, result)

        _emit_structured_observability(
            component="invoker",
            event="reconciliation_pass",
            latency_ms=int((time.monotonic() - started) * 1000),
            error_code="invocation_errors" if result.errors else "",
            extra={
                "candidates": result.candidates,
                "created": result.count(Action.POD_CREATED),
                "already_created": result.count(Action.POD_ALREADY_CREATED),
                "timed_out": result.count(Action.TIMED_OUT),
                "ignored": result.count(Action.IGNORED) + result.count(Action.POD_EXISTS),
                "failed": result.count(Action.FAILED),
            },
        )
        return result


def run_one_pass(reconciler: Reconciler) -> PassResult:
    return reconciler.run_one_pass()
