"""Unit tests for brer_invoker.supervisor busy guard and shutdown drain."""

from __future__ import annotations

import threading
import time

from brer_invoker.errors import StoreUnavailable
from brer_invoker.supervisor import PassState, Supervisor


def test_trigger_while_busy_is_dropped(caplog):
    release = threading.Event()
    started = threading.Event()
    calls = []

    def _pass():
        calls.append(1)
        started.set()
        release.wait(5)

    supervisor = Supervisor(_pass, interval=60)
    assert supervisor.trigger() is True
    assert started.wait(5)
    assert supervisor.state is PassState.RUNNING

    with caplog.at_level("WARNING", logger="brer_invoker.supervisor"):
        assert supervisor.trigger() is False
    assert "invoker is busy" in caplog.text

    release.set()
    assert supervisor.wait_idle(5) is True
    assert supervisor.state is PassState.IDLE
    assert len(calls) == 1


def test_failed_pass_returns_to_idle():
    def _pass():
        raise StoreUnavailable("Invocations list returned status code 500", 500)

    supervisor = Supervisor(_pass, interval=60)
    assert supervisor.trigger(block=True) is True
    assert supervisor.state is PassState.IDLE
    assert isinstance(supervisor.last_error, StoreUnavailable)
    assert supervisor.trigger(block=True) is True


def test_successful_pass_keeps_its_result():
    supervisor = Supervisor(lambda: "done", interval=60)
    supervisor.last_error = RuntimeError("previous pass")

    assert supervisor.trigger(block=True) is True
    assert supervisor.last_result == "done"
    assert supervisor.last_error is None


def test_stopped_supervisor_does_not_trigger():
    calls = []
    supervisor = Supervisor(lambda: calls.append(1), interval=60)
    supervisor.stop()

    assert supervisor.trigger() is False
    supervisor.run_forever()
    assert calls == []


def test_run_forever_fires_immediately_and_stops():
    fired = threading.Event()
    supervisor = Supervisor(fired.set, interval=60)

    runner = threading.Thread(target=supervisor.run_forever)
    runner.start()
    assert fired.wait(5)

    supervisor.stop()
    runner.join(5)
    assert not runner.is_alive()
    assert supervisor.wait_idle(5)


def test_wait_idle_is_bounded():
    release = threading.Event()
    supervisor = Supervisor(lambda: release.wait(5), interval=60)
    supervisor.trigger()
    supervisor.stop()

    started = time.monotonic()
    assert supervisor.wait_idle(0.1) is False
    assert time.monotonic() - started < 2

    release.set()
    assert supervisor.wait_idle(5) is True
