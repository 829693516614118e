"""MongoDB access for the cluster manager and for each node."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pymongo import MongoClient

from shardbank.enums import WALMessage
from shardbank.models import ClientShard, Log


class RecordNotFound(LookupError):
    """No document matched a query that expects one."""


def _no_empty(records: list[Any]) -> list[Any]:
    if not records:
        raise ValueError("no records to insert")
    return records


class ClusterStore:
    """The global database read by a cluster manager."""

    def __init__(self, shards: Any, events: Any, cluster: str, client: MongoClient | None = None) -> None:
        self.shards = shards
        self.events = events
        self.cluster = cluster
        self._client = client

    @classmethod
    def connect(cls, uri: str, database: str, cluster: str) -> ClusterStore:
        """Open the global database for one cluster."""
        client: MongoClient = MongoClient(uri)
        db = client[database]
        return cls(db["shards"], db["events"], cluster, client)

    def cluster_shard(self) -> list[ClientShard]:
        """Return the placements of every client belonging to this cluster."""
        return [
            ClientShard(
                client=doc.get("client", ""),
                shard=doc.get("shard", ""),
                cluster=doc.get("cluster", ""),
                init_balance=int(doc.get("init_balance", 0)),
            )
            for doc in self.shards.find({"cluster": self.cluster})
        ]

    def close(self) -> None:
        """Close the underlying connection, if this store owns one."""
        if self._client is not None:
            self._client.close()

    def __enter__(self) -> ClusterStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class NodeStore:
    """A node's own clients, write-ahead logs and lock records."""

    def __init__(self, clients: Any, logs: Any, locks: Any, client: MongoClient | None = None) -> None:
        self.clients = clients
        self.logs = logs
        self.locks = locks
        self._client = client

    @classmethod
    def connect(cls, uri: str, database: str, node: str) -> NodeStore:
        """Open the collections of one node inside its cluster's database."""
        client: MongoClient = MongoClient(uri)
        db = client[database]
        return cls(db[f"{node}_clients"], db[f"{node}_logs"], db[f"{node}_locks"], client)

    def close(self) -> None:
        """Close the underlying connection, if this store owns one."""
        if self._client is not None:
            self._client.close()

    def __enter__(self) -> NodeStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def insert_cluster_shard(self, shard: list[ClientShard]) -> None:
        """Create one client record per placement, at its starting balance."""
        records = [{"client": item.client, "balance": item.init_balance} for item in shard]
        self.clients.insert_many(_no_empty(records))

    def is_clients_empty(self) -> bool:
        """True if the node has no client records."""
        return self.clients.count_documents({}) == 0

    def client_balance(self, client: str) -> int:
        """Return a client's balance; RecordNotFound if there is no such client."""
        doc = self.clients.find_one({"client": client})
        if doc is None:
            raise RecordNotFound(f"no client found: {client}")
        return int(doc.get("balance", 0))

    def insert_client(self, client: str, balance: int) -> None:
        """Add a client with a balance."""
        self.clients.insert_one({"client": client, "balance": balance})

    def delete_client(self, client: str) -> None:
        """Remove a client."""
        self.clients.delete_one({"client": client})

    def update_client_balance(self, client: str, balance: int, set_value: bool) -> None:
        """Set the balance to ``balance``, or add it when ``set_value`` is false."""
        operator = "$set" if set_value else "$inc"
        self.clients.update_many({"client": client}, {operator: {"balance": balance}})

    def insert_wal(self, log: Log) -> None:
        """Append one write-ahead log entry."""
        self.logs.insert_one(log.to_document())

    def insert_wals(self, logs: list[Log]) -> None:
        """Append several write-ahead log entries."""
        self.logs.insert_many(_no_empty([log.to_document() for log in logs]))

    def _find_logs(self, query: dict[str, Any]) -> list[Log]:
        return [Log.from_document(doc) for doc in self.logs.find(query)]

    def wals_by_session(self, session_id: int) -> list[Log]:
        """Return the update entries of a session."""
        return self._find_logs({"session_id": session_id, "message": WALMessage.UPDATE.value})

    def wals(self) -> list[Log]:
        """Return every write-ahead log entry."""
        return self._find_logs({})

    def committed_wals(self, after: int) -> list[Log]:
        """Return commit entries whose ballot sequence is greater than ``after``."""
        return self._find_logs(
            {"message": WALMessage.COMMIT.value, "ballot_number_sequence": {"$gt": after}}
        )

    def logs_with_committed_wals(self, after: int) -> list[Log]:
        """Return the update entries of sessions committed after ballot ``after``."""
        sessions = self.logs.distinct(
            "session_id",
            {"message": WALMessage.COMMIT.value, "ballot_number_sequence": {"$gt": after}},
        )
        return self._find_logs({"message": WALMessage.UPDATE.value, "session_id": {"$in": list(sessions)}})

    def insert_lock(self, record: str) -> None:
        """Store a record of a lock taken on ``record``."""
        self.locks.insert_one({"record": record, "deleted_at": str(datetime.now())})