"""Leader election timers and the per-request consensus timer of a node."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from typing import Any

from shardbank.enums import Response
from shardbank.memory import SharedMemory

_CLOSE = object()


def _countdown_loop(
    signals: queue.Queue,
    interval: float,
    halted: Callable[[], bool],
    on_fire: Callable[[], None],
    rearm_after_fire: bool,
) -> None:
    """Run a resettable timer driven by True (reset) and False (stop) signals."""
    deadline: float | None = time.monotonic() + interval
    while True:
        if halted():
            deadline = None
        try:
            if deadline is None:
                value = signals.get()
            else:
                value = signals.get(timeout=max(0.0, deadline - time.monotonic()))
        except queue.Empty:
            on_fire()
            deadline = time.monotonic() + interval if rearm_after_fire else None
            continue
        if value is _CLOSE:
            return
        deadline = time.monotonic() + interval if value else None


class LeaderTimer:
    """Watches for a silent leader and, while leading, pings the other nodes.

    Both the leader timeout and the ping interval are given in seconds.
    """

    def __init__(
        self,
        client: Any,
        logger: logging.Logger | None,
        memory: SharedMemory,
        leader_timeout: float,
        ping_interval: float,
    ) -> None:
        self._client = client
        self._logger = logger or logging.getLogger(__name__)
        self._memory = memory
        self._leader_timeout = float(leader_timeout)
        self._ping_interval = float(ping_interval)

        self._timer_signals: queue.Queue = queue.Queue()
        self._ping_signals: queue.Queue = queue.Queue()

        self._threads = [
            threading.Thread(target=self._run_timer, name="leader-timer", daemon=True),
            threading.Thread(target=self._run_pinger, name="leader-pinger", daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def start_timer(self) -> None:
        """Restart the leader timeout."""
        self._timer_signals.put(True)

    def stop_timer(self) -> None:
        """Stop the leader timeout."""
        self._timer_signals.put(False)

    def start_pinger(self) -> None:
        """Restart the periodic pings."""
        self._ping_signals.put(True)

    def stop_pinger(self) -> None:
        """Stop the periodic pings."""
        self._ping_signals.put(False)

    def close(self) -> None:
        """Stop both background threads and wait for them."""
        self._timer_signals.put(_CLOSE)
        self._ping_signals.put(_CLOSE)
        for thread in self._threads:
            thread.join()

    def __enter__(self) -> LeaderTimer:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _run_timer(self) -> None:
        _countdown_loop(
            self._timer_signals,
            self._leader_timeout,
            lambda: self._memory.is_leader,
            self._take_over,
            rearm_after_fire=False,
        )

    def _take_over(self) -> None:
        self._logger.debug("leader timeout; current leader %s", self._memory.leader)
        self._memory.leader = self._memory.node_name
        self.start_pinger()

    def _run_pinger(self) -> None:
        _countdown_loop(
            self._ping_signals,
            self._ping_interval,
            lambda: not self._memory.is_leader,
            self._ping_all,
            rearm_after_fire=True,
        )

    def _ping_all(self) -> None:
        for address in self._memory.cluster_ips:
            try:
                self._client.ping(address, self._memory.ballot_number)
            except Exception as exc:  # a failed ping must not stop the pinger
                self._logger.warning("failed to send ping message to %s: %s", address, exc)


class PaxosTimer:
    """Bounds the time a consensus round may take; the timeout is in milliseconds."""

    def __init__(
        self,
        consensus_timeout: float,
        client: Any,
        logger: logging.Logger | None,
        memory: SharedMemory,
        notify: Callable[[], None],
    ) -> None:
        self._timeout = float(consensus_timeout) / 1000.0
        self._client = client
        self._logger = logger or logging.getLogger(__name__)
        self._memory = memory
        self._notify = notify
        self._finished: queue.Queue = queue.Queue()

    def start_consensus_timer(self, return_address: str, session_id: int) -> bool:
        """Wait for the round to finish; on timeout, answer the client and free the dispatcher.

        Returns True if the round finished in time and False if it timed out.
        """
        try:
            self._finished.get(timeout=self._timeout)
        except queue.Empty:
            self._memory.reset_accepted()
            self._logger.info("consensus timeout; session id %d", session_id)
            try:
                self._client.reply(return_address, Response.CONSENSUS_FAILED.value, session_id)
            except Exception as exc:
                self._logger.warning("failed to send reply message to %s: %s", return_address, exc)
            self._notify()
            return False
        return True

    def finish_consensus_timer(self) -> None:
        """Signal that the running round has reached a decision."""
        self._finished.put(True)