"""Response texts, write-ahead log kinds and packet labels shared by the system."""

from __future__ import annotations

from enum import Enum, IntEnum


class _TextEnum(str, Enum):
    """String enum whose str() is its value."""

    def __str__(self) -> str:
        return str(self.value)


class Response(_TextEnum):
    """Texts a cluster sends back to the client about a transaction."""

    OK = "transaction committed"
    FAILED = "transaction failed"
    CONSENSUS_FAILED = "not enough live servers"


class WALMessage(_TextEnum):
    """Kinds of write-ahead log entries."""

    START = "start"
    UPDATE = "update"
    COMMIT = "commit"
    ABORT = "abort"


class PacketLabel(IntEnum):
    """Labels of packets handed to the consensus state machines."""

    DATABASE_REQUEST = 1
    DATABASE_PREPARE = 2
    DATABASE_COMMIT = 3
    DATABASE_ABORT = 4
    DATABASE_BLOCK = 5
    DATABASE_UNBLOCK = 6

    PAXOS_REQUEST = 100
    PAXOS_PREPARE = 101
    PAXOS_ACCEPT = 102
    PAXOS_ACCEPTED = 103
    PAXOS_COMMIT = 104
    PAXOS_PING = 105
    PAXOS_PONG = 106
    PAXOS_SYNC = 107


class ClientPacketLabel(_TextEnum):
    """Labels of packets the client receives from the clusters."""

    REPLY = "reply"
    ACK = "ack"