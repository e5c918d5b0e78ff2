import logging
import subprocess
import threading
from concurrent.futures import Future

import pytest

from conftest import BlockingProcess, RecordingProcess, wait_until
from service_dns.errors import (
    ActionSupersededError,
    ProcessClosedError,
    ServiceManagerError,
)
from service_dns.events import NamespaceAdded, NamespaceRemoved
from service_dns.process import (
    SystemctlServiceManager,
    SystemdProcess,
    VRFGatedProcess,
    complete_or_defer,
)
from service_dns.registry import NamespaceRegistry


def test_systemctl_manager_builds_commands(monkeypatch):
    commands = []

    def fake_run(cmd, **kwargs):
        commands.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, "", "")

    monkeypatch.setattr(subprocess, "run", fake_run)
    manager = SystemctlServiceManager("/bin/systemctl")

    manager.start("dnsmasq@blue.service")
    manager.reload("dnsmasq@blue.service")
    manager.signal("dnsmasq@blue.service", 10)

    assert commands == [
        ["/bin/systemctl", "start", "dnsmasq@blue.service"],
        ["/bin/systemctl", "reload-or-restart", "dnsmasq@blue.service"],
        ["/bin/systemctl", "kill", "--signal=10", "dnsmasq@blue.service"],
    ]


def test_systemctl_manager_raises_on_failure(monkeypatch):
    def fake_run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 5, "", "Unit not found.\n")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(ServiceManagerError) as excinfo:
        SystemctlServiceManager().restart("dnsmasq@red.service")

    assert excinfo.value.unit == "dnsmasq@red.service"
    assert excinfo.value.operation == "restart"
    assert "Unit not found." in str(excinfo.value)


def test_systemctl_manager_wraps_os_errors(monkeypatch):
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError("systemctl")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(ServiceManagerError):
        SystemctlServiceManager().stop("dnsmasq.service")


def test_systemd_process_forwards_to_manager(manager):
    process = SystemdProcess(manager, "ddclient@dp0s3.service")

    process.start()
    process.restart()
    process.signal(1)
    assert process.signal_if_available(10) is True
    process.close()

    assert manager.calls == [
        ("start", "ddclient@dp0s3.service"),
        ("restart", "ddclient@dp0s3.service"),
        ("signal", "ddclient@dp0s3.service", 1),
        ("signal", "ddclient@dp0s3.service", 10),
        ("stop", "ddclient@dp0s3.service"),
    ]


def test_submit_on_direct_process_is_resolved(manager):
    manager.fail("reload", ServiceManagerError("dnsmasq.service", "reload"))
    process = SystemdProcess(manager, "dnsmasq.service")

    future = process.submit("reload")

    assert future.done()
    assert isinstance(future.exception(), ServiceManagerError)
    with pytest.raises(ValueError):
        process.submit("explode")


def test_gated_process_runs_immediately_when_vrf_exists():
    wrapped = RecordingProcess()
    gated = VRFGatedProcess("blue", NamespaceRegistry(checker=lambda name: True), wrapped)
    try:
        gated.restart()
        gated.signal(10)
        assert wrapped.actions == ["restart", "signal 10"]
    finally:
        gated.close()


def test_gated_process_propagates_errors():
    wrapped = RecordingProcess()
    wrapped.failures["reload"] = ServiceManagerError("dnsmasq@blue.service", "reload")
    gated = VRFGatedProcess("blue", NamespaceRegistry(checker=lambda name: True), wrapped)
    try:
        with pytest.raises(ServiceManagerError):
            gated.reload()
    finally:
        gated.close()


def test_deferred_action_runs_when_vrf_appears(registry):
    wrapped = RecordingProcess()
    gated = VRFGatedProcess("blue", registry, wrapped)
    try:
        future = gated.submit("restart")
        assert not future.done()
        assert wrapped.actions == []

        registry.handle(NamespaceAdded("blue"))

        assert future.result(timeout=2) is None
        assert wrapped.actions == ["restart"]
    finally:
        gated.close()


def test_blocked_caller_released_by_namespace_event(registry):
    wrapped = RecordingProcess()
    gated = VRFGatedProcess("blue", registry, wrapped)
    done = threading.Event()

    def caller():
        gated.start()
        done.set()

    thread = threading.Thread(target=caller)
    thread.start()
    try:
        assert not done.wait(0.1)
        registry.handle(NamespaceAdded("blue"))
        assert done.wait(2)
        assert wrapped.actions == ["start"]
    finally:
        thread.join(2)
        gated.close()


def test_latest_pending_action_wins(registry):
    wrapped = RecordingProcess()
    gated = VRFGatedProcess("blue", registry, wrapped)
    try:
        first = gated.submit("start")
        second = gated.submit("reload")
        third = gated.submit("restart")

        with pytest.raises(ActionSupersededError):
            first.result(timeout=2)
        with pytest.raises(ActionSupersededError):
            second.result(timeout=2)
        assert not third.done()

        registry.handle(NamespaceAdded("blue"))
        third.result(timeout=2)

        assert wrapped.actions == ["restart"]
    finally:
        gated.close()


def test_pending_action_runs_once_per_transition(registry):
    wrapped = RecordingProcess()
    gated = VRFGatedProcess("blue", registry, wrapped)
    try:
        future = gated.submit("restart")
        registry.handle(NamespaceAdded("blue"))
        future.result(timeout=2)

        registry.handle(NamespaceRemoved("blue"))
        registry.handle(NamespaceAdded("blue"))
        # A call after the events is ordered behind them by the actor.
        gated.signal(1)

        assert wrapped.actions == ["restart", "signal 1"]
    finally:
        gated.close()


def test_removal_defers_new_calls_without_dropping_pending(registry):
    wrapped = RecordingProcess()
    registry.handle(NamespaceAdded("blue"))
    gated = VRFGatedProcess("blue", registry, wrapped)
    try:
        gated.reload()
        registry.handle(NamespaceRemoved("blue"))
        future = gated.submit("restart")
        assert not future.done()

        registry.handle(NamespaceRemoved("blue"))
        registry.handle(NamespaceAdded("blue"))

        future.result(timeout=2)
        assert wrapped.actions == ["reload", "restart"]
    finally:
        gated.close()


def test_events_for_other_vrfs_are_ignored(registry):
    wrapped = RecordingProcess()
    gated = VRFGatedProcess("blue", registry, wrapped)
    try:
        future = gated.submit("restart")
        registry.handle(NamespaceAdded("red"))
        assert not wait_until(future.done, timeout=0.2)
        assert wrapped.actions == []
    finally:
        gated.close()


def test_signal_if_available_does_not_defer(registry):
    wrapped = RecordingProcess()
    gated = VRFGatedProcess("blue", registry, wrapped)
    try:
        assert gated.signal_if_available(10) is False

        registry.handle(NamespaceAdded("blue"))
        assert wait_until(lambda: gated.signal_if_available(10))
        assert wrapped.actions == ["signal 10"]
    finally:
        gated.close()


def test_close_unblocks_pending_caller_with_stop_result(registry):
    wrapped = RecordingProcess()
    gated = VRFGatedProcess("blue", registry, wrapped)
    outcome = {}

    def caller():
        try:
            gated.restart()
            outcome["result"] = "ok"
        except Exception as exc:  # pragma: no cover - asserted below
            outcome["result"] = exc

    thread = threading.Thread(target=caller)
    thread.start()
    assert not wait_until(lambda: "result" in outcome, timeout=0.1)

    gated.close()
    thread.join(2)

    assert not thread.is_alive()
    assert outcome["result"] == "ok"
    assert wrapped.actions == ["stop"]
    assert registry.subscriber_count() == 0


def test_close_delivers_stop_failure_to_pending_caller(registry):
    wrapped = RecordingProcess()
    wrapped.failures["stop"] = ServiceManagerError("dnsmasq@blue.service", "stop")
    gated = VRFGatedProcess("blue", registry, wrapped)
    future = gated.submit("reload")

    with pytest.raises(ServiceManagerError):
        gated.close()
    assert isinstance(future.exception(timeout=2), ServiceManagerError)
    wrapped.failures.clear()
    gated.close()


def test_failed_close_reopens_gate_and_retries_stop():
    wrapped = RecordingProcess()
    wrapped.failures["stop"] = ServiceManagerError("dnsmasq@blue.service", "stop")
    gated = VRFGatedProcess("blue", NamespaceRegistry(checker=lambda name: True), wrapped)

    with pytest.raises(ServiceManagerError):
        gated.close()
    gated.reload()
    wrapped.failures.clear()
    gated.close()

    assert wrapped.actions == ["stop", "reload", "stop"]
    with pytest.raises(ProcessClosedError):
        gated.restart()


def test_failed_close_keeps_namespace_subscriptions(registry):
    wrapped = RecordingProcess()
    wrapped.failures["stop"] = ServiceManagerError("dnsmasq@blue.service", "stop")
    gated = VRFGatedProcess("blue", registry, wrapped)

    with pytest.raises(ServiceManagerError):
        gated.close()

    assert registry.subscriber_count() == 2
    future = gated.submit("restart")
    registry.handle(NamespaceAdded("blue"))
    future.result(timeout=2)
    wrapped.failures.clear()
    gated.close()
    assert wrapped.actions == ["stop", "restart", "stop"]
    assert registry.subscriber_count() == 0


def test_calls_after_close_are_rejected(registry):
    wrapped = RecordingProcess()
    gated = VRFGatedProcess("blue", registry, wrapped)
    gated.close()
    gated.close()

    with pytest.raises(ProcessClosedError):
        gated.restart()
    with pytest.raises(ProcessClosedError):
        gated.signal_if_available(10)
    registry.handle(NamespaceAdded("blue"))
    assert wrapped.actions == ["stop"]


def test_actions_do_not_overlap():
    wrapped = BlockingProcess()
    gated = VRFGatedProcess("blue", NamespaceRegistry(checker=lambda name: True), wrapped)
    try:
        first = threading.Thread(target=gated.reload)
        first.start()
        assert wrapped.entered.wait(2)
        second = gated._enqueue("restart", wrapped.restart)
        assert not second.future.done()
        wrapped.release.set()
        first.join(2)
        second.future.result(timeout=2)
        assert wrapped.actions == ["reload", "restart"]
    finally:
        wrapped.release.set()
        gated.close()


def test_complete_or_defer_propagates_finished_errors():
    future: Future = Future()
    future.set_exception(ServiceManagerError("dnsmasq.service", "restart"))

    with pytest.raises(ServiceManagerError):
        complete_or_defer(future, "restart of dnsmasq.service")


def test_complete_or_defer_logs_late_failures(caplog):
    future: Future = Future()
    with caplog.at_level(logging.INFO, logger="service_dns.process"):
        complete_or_defer(future, "restart of dnsmasq@blue.service")
        future.set_exception(ServiceManagerError("dnsmasq@blue.service", "restart"))

    messages = [r.getMessage() for r in caplog.records]
    assert any("deferred until its routing instance" in m for m in messages)
    assert any("deferred restart of dnsmasq@blue.service failed" in m for m in messages)
