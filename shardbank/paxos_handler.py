"""The consensus side of a node: proposing, accepting and deciding requests."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from shardbank.config import PaxosConfig
from shardbank.enums import PacketLabel
from shardbank.memory import SharedMemory
from shardbank.messages import (
    AcceptedMsg,
    AcceptMsg,
    BallotNumber,
    PaxosCommitMsg,
    PingMsg,
    PongMsg,
    PrepareMsg,
    RequestMsg,
    SyncItem,
    SyncMsg,
    database_prepare_to_paxos,
    database_request_to_paxos,
    paxos_request_to_transaction,
)
from shardbank.models import Packet
from shardbank.timers import LeaderTimer, PaxosTimer


def _sequence(ballot: BallotNumber | None) -> int:
    return ballot.sequence if ballot is not None else 0


class PaxosHandler:
    """Runs the Paxos protocol of one node and feeds decided requests back to the state machines.

    ``outbox`` is the state machines' input queue and ``notify`` frees the
    dispatcher to hand over its next request.
    """

    def __init__(
        self,
        config: PaxosConfig,
        outbox: queue.Queue,
        notify: Callable[[], None],
        client: Any,
        logger: logging.Logger | None,
        memory: SharedMemory,
        storage: Any,
    ) -> None:
        self._majority = config.majority
        self._outbox = outbox
        self._notify = notify
        self._client = client
        self._logger = logger or logging.getLogger(__name__)
        self._memory = memory
        self._storage = storage
        self._leader_timer = LeaderTimer(
            client,
            self._logger.getChild("leader-timer"),
            memory,
            config.leader_timeout,
            config.leader_ping_interval,
        )
        self._paxos_timer = PaxosTimer(
            config.consensus_timeout,
            client,
            self._logger.getChild("paxos-timer"),
            memory,
            notify,
        )

    def close(self) -> None:
        """Stop the leader timer threads."""
        self._leader_timer.close()

    def __enter__(self) -> PaxosHandler:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def request(self, payload: RequestMsg | PrepareMsg, cross_shard: bool) -> None:
        """Propose a client request to the other nodes under a fresh ballot."""
        mem = self._memory
        if mem.blocked:
            return

        mem.start_collecting()
        mem.increment_ballot()

        if cross_shard:
            request = database_prepare_to_paxos(payload)
        else:
            request = database_request_to_paxos(payload)

        msg = AcceptMsg(
            ballot_number=replace(mem.ballot_number),
            node_id=mem.node_name,
            request=request,
            cross_shard=cross_shard,
        )

        for address in mem.cluster_ips:
            try:
                self._client.accept(address, msg)
            except Exception as exc:
                self._logger.warning("failed to send accept message: %s", exc)

        threading.Thread(
            target=self._paxos_timer.start_consensus_timer,
            args=(request.return_address, int(request.session_id)),
            name="consensus-timer",
            daemon=True,
        ).start()

        mem.accepted_num = replace(mem.ballot_number)
        mem.accepted_val = msg

    def accept(self, msg: AcceptMsg) -> None:
        """Answer a proposal with the value this node has already accepted, if any."""
        mem = self._memory
        if mem.blocked:
            return

        if msg.ballot_number.sequence < mem.ballot_number.sequence:
            return
        if mem.accepted_num is not None and mem.accepted_num.sequence >= msg.ballot_number.sequence:
            return

        accepted_val = mem.accepted_val
        if accepted_val is None:
            mem.accepted_num = msg.ballot_number
            mem.accepted_val = msg

        try:
            self._client.accepted(mem.address_of(msg.node_id), mem.accepted_num, accepted_val)
        except Exception as exc:
            self._logger.warning("failed to send accepted message to %s: %s", msg.node_id, exc)

    def accepted(self, msg: AcceptedMsg) -> None:
        """Collect an answer; on a majority, decide and commit the round."""
        mem = self._memory
        if mem.accepted_messages is None:
            return

        mem.append_accepted(msg)
        if len(mem.accepted_messages) < self._majority:
            return

        self._paxos_timer.finish_consensus_timer()

        best: BallotNumber | None = None
        value = mem.accepted_val
        for item in mem.accepted_messages:
            if item.accepted_value is not None:
                if best is None or best.sequence < _sequence(item.accepted_number):
                    best = item.accepted_number
                    value = item.accepted_value

        for address in mem.cluster_ips:
            try:
                self._client.commit(address, mem.accepted_num, value)
            except Exception as exc:
                self._logger.warning("failed to send commit message: %s", exc)

        mem.reset_accepted()

        self._outbox.put(
            Packet(
                label=PacketLabel.PAXOS_COMMIT,
                payload=PaxosCommitMsg(accepted_number=mem.accepted_num, accepted_value=mem.accepted_val),
            )
        )
        self._notify()

    def commit(self, msg: PaxosCommitMsg) -> None:
        """Turn a decided value into a database packet for the state machines."""
        mem = self._memory
        if mem.blocked:
            return

        value = msg.accepted_value
        if value is None:
            raise ValueError("commit message carries no accepted value")
        request = value.request

        if value.cross_shard:
            packet = Packet(
                label=PacketLabel.DATABASE_PREPARE,
                payload=PrepareMsg(
                    transaction=paxos_request_to_transaction(request),
                    client=request.client,
                    return_address=request.return_address,
                ),
            )
        else:
            packet = Packet(
                label=PacketLabel.DATABASE_REQUEST,
                payload=RequestMsg(
                    transaction=paxos_request_to_transaction(request),
                    return_address=request.return_address,
                ),
            )

        mem.record_session_ballot(int(request.session_id), msg.accepted_number)
        mem.set_ballot_sequence(_sequence(mem.accepted_num))

        mem.accepted_num = None
        mem.accepted_val = None

        self._outbox.put(packet)

    def ping(self, msg: PingMsg) -> None:
        """Follow a leader at least as good as this node and reconcile ballots with it."""
        mem = self._memory
        if mem.blocked:
            return

        # a lower node name makes a better leader
        if msg.node_id > mem.node_name:
            return

        mem.leader = msg.node_id
        self._leader_timer.start_timer()
        self._leader_timer.stop_pinger()

        diff = mem.ballot_number.sequence - msg.last_committed.sequence
        if diff > 0:
            self._outbox.put(
                Packet(
                    label=PacketLabel.PAXOS_PONG,
                    payload=PongMsg(last_committed=msg.last_committed, node_id=msg.node_id),
                )
            )
        elif diff < 0:
            try:
                self._client.pong(mem.address_of(msg.node_id), replace(mem.ballot_number))
            except Exception as exc:
                self._logger.warning("failed to send pong message to %s: %s", msg.node_id, exc)

    def pong(self, msg: PongMsg) -> None:
        """Send a lagging node the balance changes committed after its ballot."""
        mem = self._memory
        if mem.blocked:
            return

        try:
            logs = self._storage.logs_with_committed_wals(int(msg.last_committed.sequence))
        except Exception as exc:
            self._logger.warning("failed to get paxos items: %s", exc)
            logs = []

        items = [SyncItem(record=log.record, value=int(log.new_value)) for log in logs]

        try:
            self._client.sync(mem.address_of(msg.node_id), replace(mem.ballot_number), items)
        except Exception as exc:
            self._logger.warning("failed to send sync message: %s", exc)

    def sync(self, msg: SyncMsg) -> None:
        """Replay balance changes from a node that is ahead and adopt its ballot."""
        mem = self._memory
        if mem.blocked:
            return

        if msg.last_committed.sequence < mem.ballot_number.sequence:
            return

        for item in msg.items:
            try:
                self._storage.update_client_balance(item.record, int(item.value), False)
            except Exception as exc:
                self._logger.warning("failed to update client %s in sync: %s", item.record, exc)

        mem.set_ballot_sequence(msg.last_committed.sequence)
        mem.accepted_num = None
        mem.accepted_val = None

    def block(self) -> None:
        """Stop taking part in the protocol."""
        mem = self._memory
        if mem.blocked:
            return
        mem.blocked = True
        self._leader_timer.stop_pinger()
        self._leader_timer.stop_timer()

    def unblock(self) -> None:
        """Resume taking part in the protocol."""
        mem = self._memory
        if not mem.blocked:
            return
        mem.blocked = False
        self._leader_timer.start_timer()
        self._leader_timer.start_pinger()