"""Unit tests for brer_invoker.cli bootstrap ordering and exit codes."""

from __future__ import annotations

import http.client
import logging
import unittest
from unittest.mock import MagicMock, call, patch

from brer_invoker import cli
from brer_invoker.config import Settings
from brer_invoker.errors import ConfigurationError, StoreUnavailable
from brer_invoker.reconcile import Action, PassResult

ENV = {"API_URL": "http://brer-api:3000", "JWT_SECRET": "super_secret", "MAX_ACTIVE_INVOCATIONS": "5"}


class BootstrapTests(unittest.TestCase):
    def setUp(self):
        self.settings = Settings.from_env(ENV)

    def tearDown(self):
        logger = logging.getLogger("brer_invoker")
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.propagate = True
        logger.setLevel(logging.NOTSET)

    @patch.object(cli, "setup_kubernetes")
    @patch.object(cli, "create_store_client")
    def test_probes_store_before_kubernetes(self, mock_store_factory, mock_setup_k8s):
        order = MagicMock()
        store = MagicMock()
        store.list_candidates.side_effect = lambda n: order.probe(n)
        mock_store_factory.return_value = store
        mock_setup_k8s.side_effect = lambda options: order.kubernetes(options)

        reconciler = cli.bootstrap(self.settings)

        mock_store_factory.assert_called_once_with("http://brer-api:3000", b"super_secret", timeout=10)
        self.assertEqual(order.mock_calls, [call.probe(1), call.kubernetes(self.settings.kubernetes)])
        self.assertEqual(reconciler.max_active_invocations, 5)
        self.assertEqual(reconciler.token_key, b"super_secret")

    @patch.object(cli, "setup_kubernetes")
    @patch.object(cli, "create_store_client")
    def test_store_probe_failure_is_fatal(self, mock_store_factory, mock_setup_k8s):
        store = MagicMock()
        store.list_candidates.side_effect = StoreUnavailable("Invocations list returned status code 401", 401)
        mock_store_factory.return_value = store

        with self.assertRaises(StoreUnavailable):
            cli.bootstrap(self.settings)
        mock_setup_k8s.assert_not_called()

    @patch.dict("os.environ", {"API_URL": "http://brer-api:3000"}, clear=True)
    def test_main_without_key_exits_1(self):
        self.assertEqual(cli.main([]), 1)

    @patch.dict("os.environ", {"API_URL": "http://brer-api:3000", "MAX_ACTIVE_INVOCATIONS": "500"}, clear=True)
    def test_main_with_invalid_settings_exits_1(self):
        self.assertEqual(cli.main([]), 1)

    @patch.dict("os.environ", ENV, clear=True)
    @patch.object(cli, "bootstrap")
    def test_main_once_runs_a_single_pass(self, mock_bootstrap):
        reconciler = MagicMock()
        reconciler.run_one_pass.return_value = PassResult(candidates=1, outcomes=[Action.POD_CREATED])
        mock_bootstrap.return_value = reconciler

        self.assertEqual(cli.main(["--once"]), 0)

        reconciler.run_one_pass.assert_called_once_with()

    @patch.dict("os.environ", ENV, clear=True)
    @patch.object(cli, "bootstrap")
    def test_main_once_exits_1_when_the_pass_fails(self, mock_bootstrap):
        reconciler = MagicMock()
        reconciler.run_one_pass.side_effect = StoreUnavailable("down", 503)
        mock_bootstrap.return_value = reconciler

        self.assertEqual(cli.main(["--once"]), 1)

    @patch.dict("os.environ", ENV, clear=True)
    @patch.object(cli, "bootstrap")
    def test_main_once_exits_1_when_an_invocation_fails(self, mock_bootstrap):
        result = PassResult(candidates=2)
        result.record("a", Action.POD_CREATED)
        result.record("b", Action.FAILED, "OrchestratorUnavailable: api down")
        reconciler = MagicMock()
        reconciler.run_one_pass.return_value = result
        mock_bootstrap.return_value = reconciler

        self.assertEqual(cli.main(["--once"]), 1)

    @patch.dict("os.environ", {**ENV, "K8S_YAML": "just-a-string"}, clear=True)
    @patch.object(cli, "create_store_client")
    def test_main_with_malformed_inline_kubeconfig_exits_1(self, mock_store_factory):
        mock_store_factory.return_value.list_candidates.return_value = []
        self.assertEqual(cli.main(["--once"]), 1)

    @patch.dict("os.environ", ENV, clear=True)
    @patch("urllib.request.urlopen", side_effect=http.client.IncompleteRead(b"{", 10))
    def test_main_with_truncated_store_probe_exits_1(self, _mock_urlopen):
        self.assertEqual(cli.main(["--once"]), 1)

    @patch.dict("os.environ", ENV, clear=True)
    @patch.object(cli, "bootstrap", side_effect=ConfigurationError("Empty Kubeconfig"))
    def test_main_bootstrap_failure_exits_1(self, _mock_bootstrap):
        self.assertEqual(cli.main(["--once"]), 1)


if __name__ == "__main__":
    unittest.main()
