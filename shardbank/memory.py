"""In-process state shared by a node's handlers, and the client's session counter."""

from __future__ import annotations

import threading
import time

from shardbank.messages import AcceptedMsg, AcceptMsg, BallotNumber


class SharedMemory:
    """State of one cluster node: leadership, blocking and Paxos bookkeeping.

    ``accepted_messages`` is None while no consensus round is collecting
    answers, and a list while one is.
    """

    def __init__(self, leader: str, node_name: str, cluster_name: str, iptable: dict[str, str]) -> None:
        self.blocked = False
        self.leader = leader
        self.node_name = node_name
        self.cluster_name = cluster_name
        self.iptable = iptable

        self.ballot_number = BallotNumber(sequence=0, node_id=node_name)
        self.accepted_num: BallotNumber | None = None
        self.accepted_val: AcceptMsg | None = None
        self.accepted_messages: list[AcceptedMsg] | None = None
        self._session_ballots: dict[int, BallotNumber] = {}

        self.cluster_ips = self._cluster_addresses()

    def _cluster_addresses(self) -> list[str]:
        members = self.iptable.get(f"E{self.cluster_name}", "").split(":")
        return [self.iptable.get(member, "") for member in members if member != self.node_name]

    @property
    def is_leader(self) -> bool:
        """True when this node believes it is the leader."""
        return self.leader == self.node_name

    def address_of(self, key: str) -> str:
        """Return the address of a node from the iptable, or an empty string."""
        return self.iptable.get(key, "")

    def start_collecting(self) -> None:
        """Begin a consensus round with an empty list of accepted messages."""
        self.accepted_messages = []

    def append_accepted(self, msg: AcceptedMsg) -> None:
        """Record an accepted message for the current round."""
        if self.accepted_messages is None:
            self.accepted_messages = []
        self.accepted_messages.append(msg)

    def reset_accepted(self) -> None:
        """End the current round, dropping its accepted messages."""
        self.accepted_messages = None

    def increment_ballot(self) -> None:
        """Advance the ballot sequence by one."""
        self.ballot_number.sequence += 1

    def set_ballot_sequence(self, sequence: int) -> None:
        """Set the ballot sequence."""
        self.ballot_number.sequence = sequence

    def record_session_ballot(self, session_id: int, ballot: BallotNumber | None) -> None:
        """Remember the ballot under which a session was decided."""
        self._session_ballots[session_id] = ballot

    def session_ballot(self, session_id: int) -> BallotNumber | None:
        """Return the ballot a session was decided under, if known."""
        return self._session_ballots.get(session_id)


class SessionCounter:
    """Hands out unique session ids, starting from the current Unix time."""

    def __init__(self, start: int | None = None) -> None:
        self._value = int(time.time()) if start is None else start
        self._mutex = threading.Lock()

    def next(self) -> int:
        """Return a fresh session id."""
        with self._mutex:
            value = self._value
            self._value += 1
            return value