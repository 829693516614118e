"""Data records stored in the database or passed between components."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from shardbank.enums import ClientPacketLabel, PacketLabel


@dataclass
class Client:
    """A client and its balance inside a node's datastore."""

    client: str
    balance: int = 0


@dataclass
class ClientShard:
    """Placement of one client: its shard, its cluster and its starting balance."""

    client: str
    shard: str = ""
    cluster: str = ""
    init_balance: int = 0


@dataclass
class Lock:
    """A record of a lock taken on a client record."""

    record: str
    deleted_at: str = ""


@dataclass
class Log:
    """A write-ahead log entry."""

    message: str = ""
    record: str = ""
    session_id: int = 0
    new_value: int = 0
    ballot_number_sequence: int = 0
    ballot_number_pid: str = ""

    def to_document(self) -> dict[str, Any]:
        """Return the entry as a database document."""
        return {
            "message": str(self.message),
            "record": self.record,
            "session_id": self.session_id,
            "new_value": self.new_value,
            "ballot_number_sequence": self.ballot_number_sequence,
            "ballot_number_pid": self.ballot_number_pid,
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Log:
        """Build an entry from a database document, ignoring unknown keys."""
        return cls(
            message=document.get("message", ""),
            record=document.get("record", ""),
            session_id=int(document.get("session_id", 0)),
            new_value=int(document.get("new_value", 0)),
            ballot_number_sequence=int(document.get("ballot_number_sequence", 0)),
            ballot_number_pid=document.get("ballot_number_pid", ""),
        )


@dataclass
class Packet:
    """A labelled message handed from the RPC layer to a processor."""

    label: PacketLabel | ClientPacketLabel
    payload: Any = None


@dataclass
class AggregationResult:
    """A pair of accounts that often transact together, with totals."""

    account1: str
    account2: str
    transaction_count: int = 0
    total_amount: float = 0.0
    types: list[str] = field(default_factory=list)
    participants: list[str] = field(default_factory=list)


@dataclass
class Shard:
    """A range of clients assigned to one cluster."""

    name: str
    cluster: str
    start_id: int = 0
    end_id: int = 0
    clients: dict[str, int] = field(default_factory=dict)

    def dto_clients(self) -> list[ClientShard]:
        """Return one placement record per client of the shard."""
        return [
            ClientShard(client=client, shard=self.name, cluster=self.cluster, init_balance=balance)
            for client, balance in self.clients.items()
        ]


@dataclass
class Session:
    """A live transaction traced by the client."""

    sender: str = ""
    receiver: str = ""
    amount: int = 0
    type: str = ""
    text: str = ""
    id: int = 0
    participants: list[str] = field(default_factory=list)
    acks: list[Any] = field(default_factory=list)
    replies: list[Any] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)

    def to_document(self) -> dict[str, Any]:
        """Return the stored part of the session as a database document."""
        return {
            "sender": self.sender,
            "receiver": self.receiver,
            "amount": self.amount,
            "type": self.type,
            "text": self.text,
            "id": self.id,
            "participants": list(self.participants),
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Session:
        """Build a session from a database document."""
        return cls(
            sender=document.get("sender", ""),
            receiver=document.get("receiver", ""),
            amount=int(document.get("amount", 0)),
            type=document.get("type", ""),
            text=document.get("text", ""),
            id=int(document.get("id", 0)),
            participants=list(document.get("participants") or []),
        )


@dataclass
class Testset:
    """One transaction of a test scenario, as written in the test file."""

    __test__ = False

    sender: str
    receiver: str
    amount: str


@dataclass
class Testcase:
    """A test scenario: live servers, contact servers and transactions."""

    __test__ = False

    contact_servers: dict[str, str] = field(default_factory=dict)
    live_servers: list[str] = field(default_factory=list)
    sets: list[Testset] = field(default_factory=list)