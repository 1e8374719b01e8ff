"""Runtime power state of the game server.

One PowerStateMachine is the authority shared by the idle monitor and the
activation gateway. Both actors move it only through compare_and_set (or the
event helpers built on it), so an activation that lands while a shutdown is
pending cancels the shutdown instead of racing it.
"""
import threading
import time
from enum import Enum
from typing import Callable


class PowerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    IDLE_PENDING_SHUTDOWN = "idle-pending-shutdown"


TRANSITIONS: dict[PowerState, set[PowerState]] = {
    PowerState.STOPPED: {PowerState.STARTING},
    # Starting -> Stopped only when the platform rejected the start request.
    PowerState.STARTING: {PowerState.RUNNING, PowerState.STOPPED},
    PowerState.RUNNING: {PowerState.IDLE_PENDING_SHUTDOWN},
    PowerState.IDLE_PENDING_SHUTDOWN: {PowerState.RUNNING, PowerState.STOPPED},
}

# EC2 instance state names -> power state
PLATFORM_STATE_MAP = {
    "pending": PowerState.STARTING,
    "running": PowerState.RUNNING,
    "stopping": PowerState.STOPPED,
    "stopped": PowerState.STOPPED,
}


class PowerStateMachine:
    def __init__(
        self, initial: PowerState = PowerState.STOPPED,
        on_transition: Callable[[PowerState, PowerState], None] | None = None,
    ):
        self._state = initial
        self._lock = threading.Lock()
        self.on_transition = on_transition

    @property
    def state(self) -> PowerState:
        return self._state

    def compare_and_set(self, expected: PowerState, new: PowerState) -> bool:
        """Move expected -> new if the machine is still in expected.

        Returns False when another actor already moved the machine. Raises
        ValueError for a transition the lifecycle does not allow.
        """
        if new not in TRANSITIONS[expected]:
            raise ValueError(f"Illegal transition {expected.value} -> {new.value}")
        with self._lock:
            if self._state != expected:
                return False
            self._state = new
        if self.on_transition:
            self.on_transition(expected, new)
        return True

    def request_activation(self) -> bool:
        """Handle a start request. Returns True if the platform must be asked to start.

        Stopped moves to Starting. A pending shutdown is cancelled. Starting
        and Running are left alone.
        """
        while True:
            current = self._state
            if current == PowerState.STOPPED:
                if self.compare_and_set(PowerState.STOPPED, PowerState.STARTING):
                    return True
            elif current == PowerState.IDLE_PENDING_SHUTDOWN:
                if self.compare_and_set(PowerState.IDLE_PENDING_SHUTDOWN, PowerState.RUNNING):
                    return False
            else:
                return False

    def boot_complete(self) -> bool:
        return self.compare_and_set(PowerState.STARTING, PowerState.RUNNING)

    def start_failed(self) -> bool:
        """Undo a start request the platform did not accept."""
        return self.compare_and_set(PowerState.STARTING, PowerState.STOPPED)

    def sync(self, platform_state: str) -> PowerState:
        """Align with the instance's actual power state, e.g. after an external start or stop."""
        target = PLATFORM_STATE_MAP.get(platform_state)
        if target is None:
            return self._state
        with self._lock:
            previous = self._state
            if target == PowerState.RUNNING and previous == PowerState.IDLE_PENDING_SHUTDOWN:
                # Still up; the pending shutdown is ours, not the platform's.
                return previous
            if previous == target:
                return previous
            self._state = target
        if self.on_transition:
            self.on_transition(previous, target)
        return target


class IdleMonitor:
    """Stops the server after `threshold` seconds without activity plus a `grace` window.

    `observe` is called on every poll with whether players were active since the
    last poll. `stop_instance` is only invoked on the Idle-pending -> Stopped edge.
    """

    def __init__(
        self, machine: PowerStateMachine, threshold: float, grace: float,
        stop_instance: Callable[[], None], clock: Callable[[], float] = time.monotonic,
    ):
        self.machine = machine
        self.threshold = threshold
        self.grace = grace
        self.stop_instance = stop_instance
        self.clock = clock
        self._last_activity: float | None = None
        self._pending_since: float | None = None
        self._last_seen = machine.state

    def observe(self, activity: bool) -> PowerState:
        now = self.clock()
        state = self.machine.state
        if state == PowerState.RUNNING and (self._last_seen != PowerState.RUNNING or self._last_activity is None):
            # Fresh boot or cancelled shutdown: idle time restarts here.
            self._last_activity = now
            self._pending_since = None
        self._last_seen = state

        if state == PowerState.RUNNING:
            if activity:
                self._last_activity = now
            elif now - self._last_activity >= self.threshold:
                if self.machine.compare_and_set(PowerState.RUNNING, PowerState.IDLE_PENDING_SHUTDOWN):
                    self._pending_since = now
        elif state == PowerState.IDLE_PENDING_SHUTDOWN:
            if self._pending_since is None:
                self._pending_since = now
            if activity:
                if self.machine.compare_and_set(PowerState.IDLE_PENDING_SHUTDOWN, PowerState.RUNNING):
                    self._last_activity = now
                    self._pending_since = None
            elif now - self._pending_since >= self.grace:
                if self.machine.compare_and_set(PowerState.IDLE_PENDING_SHUTDOWN, PowerState.STOPPED):
                    self._pending_since = None
                    self.stop_instance()

        self._last_seen = self.machine.state
        return self._last_seen

    def run(
        self, activity_probe: Callable[[], bool], interval: float = 60.0,
        platform_state: Callable[[], str] | None = None,
        sleep: Callable[[float], None] = time.sleep, should_stop: Callable[[], bool] = lambda: False,
    ) -> None:
        while not should_stop():
            if platform_state:
                self.machine.sync(platform_state())
            self.observe(activity_probe())
            sleep(interval)
