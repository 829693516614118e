"""Messages exchanged between the client and the cluster nodes."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class TransactionMsg:
    """A transfer of an amount from sender to receiver within a session."""

    sender: str = ""
    receiver: str = ""
    amount: int = 0
    session_id: int = 0


@dataclass
class RequestMsg:
    """An intra-shard transaction request."""

    transaction: TransactionMsg = field(default_factory=TransactionMsg)
    return_address: str = ""


@dataclass
class PrepareMsg:
    """The prepare phase of a cross-shard transaction for one client."""

    transaction: TransactionMsg = field(default_factory=TransactionMsg)
    client: str = ""
    return_address: str = ""


@dataclass
class CommitMsg:
    """The commit phase of a cross-shard transaction."""

    session_id: int = 0
    return_address: str = ""


@dataclass
class AbortMsg:
    """The abort phase of a cross-shard transaction."""

    session_id: int = 0


@dataclass
class ReplyMsg:
    """A cluster's final answer about a session."""

    session_id: int = 0
    text: str = ""


@dataclass
class AckMsg:
    """A cluster's vote on a prepared session."""

    session_id: int = 0
    is_aborted: bool = False
    node_id: str = ""


@dataclass
class BallotNumber:
    """A Paxos ballot: sequence number and the node that issued it."""

    sequence: int = 0
    node_id: str = ""


@dataclass
class PaxosRequest:
    """A transaction as carried through the consensus protocol."""

    sender: str = ""
    receiver: str = ""
    amount: int = 0
    session_id: int = 0
    client: str = ""
    return_address: str = ""


@dataclass
class AcceptMsg:
    """A leader's proposal of a request under a ballot."""

    ballot_number: BallotNumber = field(default_factory=BallotNumber)
    node_id: str = ""
    request: PaxosRequest = field(default_factory=PaxosRequest)
    cross_shard: bool = False


@dataclass
class AcceptedMsg:
    """A follower's answer to an accept message."""

    accepted_number: BallotNumber | None = None
    accepted_value: AcceptMsg | None = None


@dataclass
class PaxosCommitMsg:
    """The decided value of a consensus round."""

    accepted_number: BallotNumber | None = None
    accepted_value: AcceptMsg | None = None


@dataclass
class PingMsg:
    """A leader's heartbeat carrying its last committed ballot."""

    last_committed: BallotNumber = field(default_factory=BallotNumber)
    node_id: str = ""


@dataclass
class PongMsg:
    """A request to be synced from a given ballot on."""

    last_committed: BallotNumber = field(default_factory=BallotNumber)
    node_id: str = ""


@dataclass
class SyncItem:
    """One balance change to replay on a lagging node."""

    record: str = ""
    value: int = 0


@dataclass
class SyncMsg:
    """Balance changes that bring a node up to a ballot."""

    last_committed: BallotNumber = field(default_factory=BallotNumber)
    items: list[SyncItem] = field(default_factory=list)


def database_request_to_paxos(req: RequestMsg) -> PaxosRequest:
    """Turn an intra-shard request into a consensus request."""
    trx = req.transaction
    return PaxosRequest(
        sender=trx.sender,
        receiver=trx.receiver,
        amount=trx.amount,
        session_id=trx.session_id,
        return_address=req.return_address,
    )


def database_prepare_to_paxos(req: PrepareMsg) -> PaxosRequest:
    """Turn a prepare message into a consensus request."""
    trx = req.transaction
    return PaxosRequest(
        sender=trx.sender,
        receiver=trx.receiver,
        amount=trx.amount,
        session_id=trx.session_id,
        client=req.client,
        return_address=req.return_address,
    )


def paxos_request_to_transaction(req: PaxosRequest) -> TransactionMsg:
    """Extract the transaction carried by a consensus request."""
    return TransactionMsg(
        sender=req.sender,
        receiver=req.receiver,
        amount=req.amount,
        session_id=req.session_id,
    )