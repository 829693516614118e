"""The client's view of the global database: client placements and sessions."""

from __future__ import annotations

from typing import Any

from pymongo import MongoClient

from shardbank.models import Session
from shardbank.storage import RecordNotFound


class SessionStore:
    """Maps clients to clusters and keeps the sessions the client has started."""

    def __init__(self, shards: Any, sessions: Any, client: MongoClient | None = None) -> None:
        self.shards = shards
        self.sessions = sessions
        self._client = client

    @classmethod
    def connect(cls, uri: str, database: str) -> SessionStore:
        """Open the shards and sessions collections of a database."""
        client: MongoClient = MongoClient(uri)
        db = client[database]
        return cls(db["shards"], db["sessions"], client)

    def close(self) -> None:
        """Close the underlying connection, if this store owns one."""
        if self._client is not None:
            self._client.close()

    def __enter__(self) -> SessionStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def client_shard(self, client: str) -> str:
        """Return the cluster a client lives in; RecordNotFound if it has none."""
        doc = self.shards.find_one({"client": client}, {"cluster": 1, "_id": 0})
        if doc is None:
            raise RecordNotFound(f"no shard found for client: {client}")
        return str(doc.get("cluster", ""))

    def update_client_shard(self, client: str, shard: str) -> None:
        """Move a client to another cluster."""
        self.shards.update_many({"client": client}, {"$set": {"cluster": shard}})

    def insert_session(self, session: Session) -> None:
        """Store a session for later rebalancing."""
        self.sessions.insert_one(session.to_document())

    def session_by_id(self, session_id: int) -> Session:
        """Return a stored session; RecordNotFound if there is none with that id."""
        doc = self.sessions.find_one({"id": session_id})
        if doc is None:
            raise RecordNotFound(f"no session found for id: {session_id}")
        return Session.from_document(doc)