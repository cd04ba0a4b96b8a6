import os
import queue
import signal
import threading
import time

import pytest

from mixedversion import LifecycleError
from mixedversion.lifecycle import Event, NodeState, ShutdownMachine, ShutdownOutcome


def blocking_drain(release: threading.Event):
    def drain():
        release.wait(timeout=10)

    return drain


def test_graceful_shutdown():
    drained = []
    machine = ShutdownMachine(drain=lambda: drained.append(True), name="n1")
    assert machine.state is NodeState.RUNNING

    machine.notify(Event.STOP_SIGNAL)
    assert machine.wait() is ShutdownOutcome.GRACEFUL
    assert machine.state is NodeState.STOPPED
    assert drained == [True]


def test_second_signal_forces_shutdown():
    """
    1. First signal starts draining which never finishes on its own.
    2. Second signal arrives while draining.
    3. Node stops without waiting for the drain.
    """
    release = threading.Event()
    machine = ShutdownMachine(drain=blocking_drain(release), name="n1")

    machine.notify(Event.STOP_SIGNAL)
    machine.notify(Event.STOP_SIGNAL)
    try:
        outcome = machine.wait()
    finally:
        release.set()

    assert outcome is ShutdownOutcome.FORCED_BY_SIGNAL
    assert outcome.is_forced
    assert machine.state is NodeState.STOPPED


def test_hard_shutdown_deadline(caplog: pytest.LogCaptureFixture):
    release = threading.Event()
    machine = ShutdownMachine(drain=blocking_drain(release), hard_shutdown_after=0.3, progress_every=0.05)

    machine.notify(Event.STOP_SIGNAL)
    try:
        outcome = machine.wait()
    finally:
        release.set()

    assert outcome is ShutdownOutcome.FORCED_BY_TIMEOUT
    assert outcome.is_forced
    assert "still draining" in caplog.text
    assert "time limit reached" in caplog.text


def test_drain_failure():
    error = RuntimeError("connection refused")

    def drain():
        raise error

    machine = ShutdownMachine(drain=drain)
    machine.notify(Event.STOP_SIGNAL)

    outcome = machine.wait()
    assert outcome is ShutdownOutcome.DRAIN_FAILED
    assert not outcome.is_forced
    assert machine.drain_error is error
    assert machine.state is NodeState.STOPPED


def test_quit_request_waits_for_remote_drain():
    drained = []
    machine = ShutdownMachine(drain=lambda: drained.append(True))

    machine.notify(Event.QUIT_REQUESTED)
    machine.notify(Event.QUIT_REQUESTED)
    machine.notify(Event.DRAINED)

    assert machine.wait() is ShutdownOutcome.GRACEFUL
    # draining was done elsewhere
    assert drained == []


def test_drained_while_running():
    machine = ShutdownMachine(drain=lambda: None)
    machine.notify(Event.DRAINED)
    assert machine.wait() is ShutdownOutcome.GRACEFUL


def test_invalid_transitions():
    machine = ShutdownMachine(drain=lambda: None, name="n1")
    machine.notify(Event.DRAIN_FAILED)
    with pytest.raises(LifecycleError, match="unexpected drain-failed while running"):
        machine.wait()

    machine = ShutdownMachine(drain=lambda: None, name="n1")
    machine.notify(Event.STOP_SIGNAL)
    machine.wait()

    with pytest.raises(LifecycleError, match="only wait for shutdown of a running node, it is stopped"):
        machine.wait()

    with pytest.raises(LifecycleError, match="cannot go from stopped to draining"):
        machine._transition(NodeState.DRAINING)


def test_signals_are_routed_into_machine():
    if threading.current_thread() is not threading.main_thread():
        pytest.skip("signal handlers can only be installed from the main thread")

    machine = ShutdownMachine(drain=lambda: None)

    previous = machine.handle_signals([signal.SIGTERM])
    try:
        signal.raise_signal(signal.SIGTERM)
    finally:
        ShutdownMachine.restore_signals(previous)

    assert machine.events.get(timeout=1) is Event.STOP_SIGNAL
    assert signal.getsignal(signal.SIGTERM) == previous[signal.SIGTERM]


def test_signals_while_waiting_for_shutdown():
    """
    1. Main thread blocks in `wait`, another thread sends SIGTERM to the process.
    2. The handler enqueues from inside the blocked `wait`.
    3. A second SIGTERM while draining forces the stop.
    """
    if threading.current_thread() is not threading.main_thread():
        pytest.skip("signal handlers can only be installed from the main thread")

    release = threading.Event()
    machine = ShutdownMachine(drain=blocking_drain(release), name="n1")
    assert isinstance(machine.events, queue.SimpleQueue)

    def send_signals():
        for _ in range(2):
            time.sleep(0.1)
            os.kill(os.getpid(), signal.SIGTERM)

    sender = threading.Thread(target=send_signals, daemon=True)
    previous = machine.handle_signals([signal.SIGTERM])
    try:
        sender.start()
        outcome = machine.wait()
    finally:
        ShutdownMachine.restore_signals(previous)
        release.set()
        sender.join(timeout=5)

    assert outcome is ShutdownOutcome.FORCED_BY_SIGNAL
    assert machine.state is NodeState.STOPPED
