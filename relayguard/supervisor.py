"""
Connection supervisor: health polling, failover and guaranteed rollback.

State machine::

    CONNECTED --(oracle insecure / oracle error)--> SWITCHING
    SWITCHING --(select + down + up ok)-----------> CONNECTED
    SWITCHING --(select, down or up fails)--------> TERMINATED  (fail-stop)
    CONNECTED | SWITCHING --(stop())--------------> TERMINATED

A single daemon thread runs the loop; ``stop()`` sets the cancellation event
so the loop wakes immediately instead of at the next tick. Whatever ends the
loop, the ambient network state is rolled back exactly once.
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from relayguard.config import CONFIG
from relayguard.logging_utils import METRICS, get_logger
from relayguard.models import RelayDescriptor, Selection, SelectionPolicy, SupervisorState
from relayguard.netstate import NetworkState
from relayguard.selector import ServerSelector
from relayguard.status import StatusOracle
from relayguard.tunnel import TunnelDriver

logger = get_logger("relayguard.supervisor")


class ConnectionSupervisor:
    def __init__(
        self,
        selector: ServerSelector,
        driver: TunnelDriver,
        oracle: StatusOracle,
        network: NetworkState,
        policy: SelectionPolicy,
        *,
        interval_s: Optional[float] = None,
        initial_relay: Optional[RelayDescriptor] = None,
    ) -> None:
        self.selector = selector
        self.driver = driver
        self.oracle = oracle
        self.network = network
        self.policy = policy
        self.interval_s = float(interval_s if interval_s is not None else CONFIG["MONITOR_INTERVAL_S"])

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._terminated = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state = SupervisorState.CONNECTED
        self._active: Optional[RelayDescriptor] = initial_relay
        self._rolled_back = False

        self.failovers = 0
        self.rollbacks = 0
        self.last_error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> SupervisorState:
        with self._lock:
            return self._state

    @property
    def active_relay(self) -> Optional[RelayDescriptor]:
        with self._lock:
            return self._active

    @property
    def terminated(self) -> bool:
        return self._terminated.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the supervisor has terminated and rolled back."""
        return self._terminated.wait(timeout)

    def _set_state(self, new_state: SupervisorState) -> None:
        with self._lock:
            old = self._state
            self._state = new_state
        if old != new_state:
            logger.info("supervisor state change", extra={"from": old.value, "to": new_state.value})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        if self.terminated:
            raise RuntimeError("supervisor already terminated")
        self._thread = threading.Thread(target=self._loop, name="connection-supervisor", daemon=True)
        self._thread.start()
        logger.info(
            "supervisor started",
            extra={
                "interval_s": self.interval_s,
                "relay": self._active.hostname if self._active else "",
            },
        )

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Cancel the loop, tear the tunnel down and roll back.

        Returns False only if the loop thread is still finishing a failover
        after ``timeout``; it then rolls back itself when the failover ends.
        """

        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("supervisor stop timed out; loop still switching")
                return False
        self._terminate(reason="stop")
        return True

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                if not self.run_once():
                    break
                if self._stop_event.wait(self.interval_s):
                    break
        finally:
            self._terminate(reason="stop" if self._stop_event.is_set() else "fail-stop")

    def _terminate(self, reason: str) -> None:
        with self._lock:
            if self._rolled_back:
                return
            self._rolled_back = True
            self._state = SupervisorState.TERMINATED
            active = self._active
            self._active = None

        if active is not None:
            try:
                self.driver.down()
            except Exception as exc:
                logger.error(
                    "failed to bring tunnel down during shutdown",
                    extra={"relay": active.hostname, "error": str(exc)},
                )

        try:
            self.network.rollback()
        except Exception as exc:
            logger.error("failed to roll back network state", extra={"error": str(exc)})
        finally:
            self.rollbacks += 1
            self._terminated.set()
            logger.info("supervisor terminated", extra={"reason": reason, "failovers": self.failovers})

    # ------------------------------------------------------------------
    # Loop body
    # ------------------------------------------------------------------

    def _check_secure(self) -> bool:
        METRICS.counter("supervisor.checks").inc()
        try:
            return bool(self.oracle.is_secure())
        except Exception as exc:
            # An unanswered status query counts as insecure
            logger.warning("status check failed", extra={"error": str(exc)})
            return False

    def _bring_up(self, selection: Selection) -> None:
        if selection.second_hop is None:
            self.driver.up(selection.primary)
        else:
            self.driver.up(selection.primary, exit_relay=selection.second_hop)

    def run_once(self) -> bool:
        """One health check and, if needed, one failover.

        Returns False when the loop must stop (fail-stop or already terminated).
        """

        if self.state == SupervisorState.TERMINATED:
            return False

        if self._check_secure():
            logger.debug("connection secure")
            return True

        previous = self.active_relay
        logger.info(
            "connection is not secure, switching servers",
            extra={"relay": previous.hostname if previous else ""},
        )
        self._set_state(SupervisorState.SWITCHING)
        started = time.monotonic()

        try:
            selection = self.selector.select(self.policy)
            self.driver.down()
            with self._lock:
                self._active = None
            self._bring_up(selection)
        except Exception as exc:
            self.last_error = exc
            logger.error("failover failed, stopping supervision", extra={"error": str(exc)})
            try:
                self.driver.down()
            except Exception as down_exc:
                logger.error("failed to disconnect after switch failure", extra={"error": str(down_exc)})
            with self._lock:
                self._active = None
            self._set_state(SupervisorState.TERMINATED)
            self._terminate(reason="fail-stop")
            return False

        with self._lock:
            self._active = selection.primary
        self.failovers += 1
        METRICS.counter("supervisor.failovers").inc()
        self._set_state(SupervisorState.CONNECTED)
        logger.info(
            "failover complete",
            extra={
                "from": previous.hostname if previous else "",
                "to": selection.primary.hostname,
                "elapsed_s": round(time.monotonic() - started, 3),
            },
        )
        return True
