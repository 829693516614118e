"""Consensus state machines, the request dispatcher and their wiring."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from typing import Any

from shardbank.config import PaxosConfig
from shardbank.database_handler import DatabaseHandler
from shardbank.enums import PacketLabel
from shardbank.locks import LockManager
from shardbank.memory import SharedMemory
from shardbank.models import Packet
from shardbank.paxos_handler import PaxosHandler


class ConsensusStateMachine:
    """Takes packets from its queue and hands each to the matching handler.

    A ``None`` taken from the queue stops :meth:`run`.
    """

    def __init__(
        self,
        channel: queue.Queue,
        database_handler: Any,
        paxos_handler: Any,
        logger: logging.Logger | None = None,
    ) -> None:
        self._channel = channel
        self._logger = logger or logging.getLogger(__name__)
        db = database_handler
        px = paxos_handler
        self._routes: dict[int, Callable[[Any], None]] = {
            PacketLabel.DATABASE_REQUEST: db.request,
            PacketLabel.DATABASE_PREPARE: db.prepare,
            PacketLabel.DATABASE_COMMIT: db.commit,
            PacketLabel.DATABASE_ABORT: lambda payload: db.abort(int(payload.session_id)),
            PacketLabel.PAXOS_REQUEST: lambda payload: px.request(payload, False),
            PacketLabel.PAXOS_PREPARE: lambda payload: px.request(payload, True),
            PacketLabel.PAXOS_ACCEPT: px.accept,
            PacketLabel.PAXOS_ACCEPTED: px.accepted,
            PacketLabel.PAXOS_COMMIT: px.commit,
            PacketLabel.PAXOS_PING: px.ping,
            PacketLabel.PAXOS_PONG: px.pong,
            PacketLabel.PAXOS_SYNC: px.sync,
            PacketLabel.DATABASE_BLOCK: lambda payload: px.block(),
            PacketLabel.DATABASE_UNBLOCK: lambda payload: px.unblock(),
        }

    def handle(self, packet: Packet) -> bool:
        """Pass one packet to its handler; False if its label is unknown."""
        route = self._routes.get(packet.label)
        if route is None:
            return False
        route(packet.payload)
        return True

    def run(self) -> None:
        """Handle packets until a ``None`` arrives."""
        while True:
            packet = self._channel.get()
            if packet is None:
                return
            try:
                self.handle(packet)
            except Exception:
                self._logger.exception("failed to handle packet %s", packet.label)


class Dispatcher:
    """Passes client requests to the state machines one consensus round at a time.

    Requests are dropped while this node is not the leader or is blocked.
    A ``None`` taken from the input queue stops :meth:`run`.
    """

    def __init__(self, inbox: queue.Queue, outbox: queue.Queue, memory: SharedMemory) -> None:
        self._inbox = inbox
        self._outbox = outbox
        self._memory = memory
        self._notifications: queue.Queue = queue.Queue()

    def notify(self) -> None:
        """Signal that the current round is over."""
        self._notifications.put(True)

    def forward(self, packet: Packet) -> bool:
        """Hand a packet to the state machines and wait for its round to end.

        Returns False, without forwarding, if this node may not lead a round.
        """
        if not self._memory.is_leader or self._memory.blocked:
            return False
        self._outbox.put(packet)
        self._notifications.get()
        return True

    def run(self) -> None:
        """Forward packets until a ``None`` arrives."""
        while True:
            packet = self._inbox.get()
            if packet is None:
                return
            self.forward(packet)


class ConsensusManager:
    """Builds the handlers, dispatcher and state machines of one node and runs them."""

    def __init__(self, config: PaxosConfig, memory: SharedMemory, storage: Any) -> None:
        self.config = config
        self.memory = memory
        self.storage = storage
        self.channel: queue.Queue = queue.Queue(maxsize=config.csm_buffer_size)
        self.dispatcher_channel: queue.Queue = queue.Queue(maxsize=config.csm_buffer_size)
        self.dispatcher: Dispatcher | None = None
        self.machines: list[ConsensusStateMachine] = []
        self._paxos_handler: PaxosHandler | None = None
        self._threads: list[threading.Thread] = []

    def initialize(self, logger: logging.Logger | None, client: Any) -> None:
        """Start the dispatcher and the configured number of state machines."""
        if self.dispatcher is not None:
            raise RuntimeError("consensus manager is already initialized")
        logger = logger or logging.getLogger(__name__)

        self.dispatcher = Dispatcher(self.dispatcher_channel, self.channel, self.memory)

        database_handler = DatabaseHandler(
            client,
            LockManager(),
            logger.getChild("csm-db-handler"),
            self.memory,
            self.storage,
        )
        self._paxos_handler = PaxosHandler(
            self.config,
            self.channel,
            self.dispatcher.notify,
            client,
            logger.getChild("csm-paxos-handler"),
            self.memory,
            self.storage,
        )

        dispatcher_thread = threading.Thread(target=self.dispatcher.run, name="dispatcher", daemon=True)
        dispatcher_thread.start()
        self._threads.append(dispatcher_thread)

        for index in range(self.config.csm_replicas):
            machine = ConsensusStateMachine(self.channel, database_handler, self._paxos_handler, logger)
            self.machines.append(machine)
            thread = threading.Thread(target=machine.run, name=f"csm-{index}", daemon=True)
            thread.start()
            self._threads.append(thread)
            logger.info("consensus state machine is running; replica number %d", index)

    def close(self, timeout: float = 5.0) -> None:
        """Stop the state machines, the dispatcher and the timers."""
        for _ in self.machines:
            self.channel.put(None)
        if self.dispatcher is not None:
            self.dispatcher_channel.put(None)
            self.dispatcher.notify()
        if self._paxos_handler is not None:
            self._paxos_handler.close()
        for thread in self._threads:
            thread.join(timeout)
        self._threads.clear()

    def __enter__(self) -> ConsensusManager:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()