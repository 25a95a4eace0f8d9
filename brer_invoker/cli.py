"""brer_invoker.cli — Process bootstrap and run loop.

Bootstrap order: settings, signing key, store client, store probe (a one-item
listing), Kubernetes. Any failure there is fatal and the run loop never
starts. ``SIGINT``/``SIGTERM`` stop the trigger and drain the in-flight pass
for at most ``SHUTDOWN_GRACE_SECONDS``.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from typing import List, Optional

from brer_invoker import __version__
from brer_invoker.auth import import_key
from brer_invoker.config import Settings, configure_logging
from brer_invoker.errors import InvokerError
from brer_invoker.kubernetes_client import setup_kubernetes
from brer_invoker.reconcile import Action, Reconciler
from brer_invoker.store_client import create_store_client
from brer_invoker.supervisor import Supervisor

__all__ = ["bootstrap", "main"]

logger = logging.getLogger("brer_invoker")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="brer-invoker",
        description="Create pods for pending Invocations and fail the ones that timed out.",
    )
    parser.add_argument("--once", action="store_true", help="Run a single reconciliation pass and exit")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def bootstrap(settings: Settings) -> Reconciler:
    logger.debug("import token key")
    token_key = import_key(
        secret=settings.jwt_secret,
        private_key=settings.jwt_private_key,
        private_key_secret_id=settings.jwt_private_key_secret_id,
        region=settings.secrets_region,
    )

    store = create_store_client(settings.api_url, token_key, timeout=settings.http_timeout_seconds)

    logger.debug("test api connection")
    store.list_candidates(1)

    kubernetes = setup_kubernetes(settings.kubernetes)
    return Reconciler.from_settings(settings, store, kubernetes, token_key)


def _install_signal_handlers(supervisor: Supervisor) -> None:
    def _handle(signum, _frame):
        logger.info("received close signal %s", signal.Signals(signum).name)
        supervisor.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        settings = Settings.from_env()
    except InvokerError as exc:
        configure_logging()
        logger.critical("bootstrap failed: %s", exc)
        return 1

    configure_logging(args.log_level or settings.log_level, settings.log_file, settings.log_pretty)
    logger.info("bootstrap application")
    try:
        reconciler = bootstrap(settings)
    except InvokerError as exc:
        logger.critical("bootstrap failed: %s", exc)
        return 1

    supervisor = Supervisor(reconciler.run_one_pass, interval=settings.invoke_interval)
    if args.once:
        supervisor.trigger(block=True)
        if supervisor.last_error is not None:
            return 1
        failed = supervisor.last_result.count(Action.FAILED) if supervisor.last_result is not None else 0
        if failed:
            logger.error("%d invocation(s) failed", failed)
            return 1
        return 0

    _install_signal_handlers(supervisor)
    logger.info("application is running")
    supervisor.run_forever()

    logger.info("waiting for pending jobs")
    if not supervisor.wait_idle(settings.shutdown_grace_seconds):
        logger.error("shutdown grace period of %ss expired, abandoning pending jobs", settings.shutdown_grace_seconds)
        logging.shutdown()
        # Worker threads are joined at interpreter exit; skip that
        os._exit(1)
    logger.info("application closed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
