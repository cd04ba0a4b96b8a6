from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Sequence, Set

import enum
import queue
import signal
import threading
import time

from mixedversion.errors import LifecycleError
from mixedversion.log import log

HARD_SHUTDOWN_AFTER = 60  # seconds
PROGRESS_EVERY = 5  # seconds


@enum.unique
class NodeState(enum.Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


@enum.unique
class Event(enum.Enum):
    """
    - STOP_SIGNAL: SIGINT/SIGTERM or an equivalent request. The first one
      starts draining, a second one forces the node to stop.
    - QUIT_REQUESTED: draining was started by someone else, e.g. a remote
      quit request. Nothing to drain on our side, only wait for it.
    - DRAINED: draining finished.
    - DRAIN_FAILED: the drain routine raised.
    """

    STOP_SIGNAL = "stop-signal"
    QUIT_REQUESTED = "quit-requested"
    DRAINED = "drained"
    DRAIN_FAILED = "drain-failed"


@enum.unique
class ShutdownOutcome(enum.Enum):
    GRACEFUL = "graceful"
    FORCED_BY_SIGNAL = "forced-by-signal"
    FORCED_BY_TIMEOUT = "forced-by-timeout"
    DRAIN_FAILED = "drain-failed"

    @property
    def is_forced(self) -> bool:
        return self in [ShutdownOutcome.FORCED_BY_SIGNAL, ShutdownOutcome.FORCED_BY_TIMEOUT]


TRANSITIONS: Dict[NodeState, Set[NodeState]] = {
    NodeState.RUNNING: {NodeState.DRAINING, NodeState.STOPPED},
    NodeState.DRAINING: {NodeState.STOPPED},
    NodeState.STOPPED: set(),
}


class ShutdownMachine:
    """
    Shutdown of a running node: running -> draining -> stopped.

    `wait` blocks until the first stop request, starts draining and then
    stops on whichever comes first: draining finished, a second stop signal,
    or the hard shutdown deadline. Every input arrives as an `Event` through
    one queue, so the order of events is the only thing which matters.

    Example:

        machine = ShutdownMachine(drain=server.drain, name="n1")
        machine.handle_signals()
        outcome = machine.wait()
        if outcome.is_forced:
            server.kill()
    """

    def __init__(
        self,
        drain: Callable[[], Any],
        hard_shutdown_after: float = HARD_SHUTDOWN_AFTER,
        progress_every: float = PROGRESS_EVERY,
        name: str = "node",
    ) -> None:
        self.drain = drain
        self.hard_shutdown_after = hard_shutdown_after
        self.progress_every = progress_every
        self.name = name
        self.state = NodeState.RUNNING
        # NOTE: signal handlers put into it, SimpleQueue.put is reentrant.
        self.events: queue.SimpleQueue[Event] = queue.SimpleQueue()
        self.drain_error: Optional[BaseException] = None
        self._drainer: Optional[threading.Thread] = None

    def __repr__(self) -> str:
        return f"ShutdownMachine(name={self.name}, state={self.state.value})"

    def notify(self, event: Event) -> None:
        self.events.put(event)

    def handle_signals(self, signals: Sequence[signal.Signals] = (signal.SIGINT, signal.SIGTERM)) -> Dict[int, Any]:
        """
        Routes `signals` into the machine. Must be called from the main thread.
        Returns previous handlers, see `restore_signals`.
        """
        previous = {}
        for sig in signals:
            previous[sig] = signal.signal(sig, lambda signum, frame: self.notify(Event.STOP_SIGNAL))
        return previous

    @staticmethod
    def restore_signals(previous: Dict[int, Any]) -> None:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    def _transition(self, to: NodeState) -> None:
        if to not in TRANSITIONS[self.state]:
            raise LifecycleError(f"{self.name}: cannot go from {self.state.value} to {to.value}")
        log.info(f"{self.name}: {self.state.value} -> {to.value}")
        self.state = to

    def _run_drain(self) -> None:
        log.info(f"{self.name}: draining started")
        try:
            self.drain()
        except Exception as e:
            log.error(f"{self.name}: draining failed: {e}")
            self.drain_error = e
            self.notify(Event.DRAIN_FAILED)
            return
        self.notify(Event.DRAINED)

    def _start_draining(self) -> None:
        self._drainer = threading.Thread(target=self._run_drain, name=f"drain-{self.name}", daemon=True)
        self._drainer.start()

    def wait(self) -> ShutdownOutcome:
        if self.state is not NodeState.RUNNING:
            raise LifecycleError(f"{self.name}: can only wait for shutdown of a running node, it is {self.state.value}")

        # STEP: block until somebody asks the node to stop.

        match self.events.get():
            case Event.STOP_SIGNAL:
                self._transition(NodeState.DRAINING)
                self._start_draining()
            case Event.QUIT_REQUESTED:
                self._transition(NodeState.DRAINING)
            case Event.DRAINED:
                self._transition(NodeState.STOPPED)
                return ShutdownOutcome.GRACEFUL
            case event:
                raise LifecycleError(f"{self.name}: unexpected {event.value} while running")

        # STEP: drain, unless interrupted by a second signal or the deadline.

        log.info(f"{self.name}: initiating graceful shutdown")
        deadline = time.monotonic() + self.hard_shutdown_after
        outcome = None
        while outcome is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                log.warning(f"{self.name}: time limit reached, initiating hard shutdown")
                outcome = ShutdownOutcome.FORCED_BY_TIMEOUT
                continue

            try:
                event = self.events.get(timeout=min(remaining, self.progress_every))
            except queue.Empty:
                log.info(f"{self.name}: still draining, {remaining:.0f}s left before hard shutdown")
                continue

            match event:
                case Event.STOP_SIGNAL:
                    log.warning(f"{self.name}: second signal received, initiating hard shutdown")
                    outcome = ShutdownOutcome.FORCED_BY_SIGNAL
                case Event.DRAINED:
                    log.info(f"{self.name}: drained and shutdown completed")
                    outcome = ShutdownOutcome.GRACEFUL
                case Event.DRAIN_FAILED:
                    outcome = ShutdownOutcome.DRAIN_FAILED
                case Event.QUIT_REQUESTED:
                    log.info(f"{self.name}: already draining, ignoring quit request")

        self._transition(NodeState.STOPPED)
        return outcome
