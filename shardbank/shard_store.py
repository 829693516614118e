"""The shard tool's access to the global database: placements and rebalance analysis."""

from __future__ import annotations

from typing import Any

from pymongo import MongoClient

from shardbank.models import AggregationResult, ClientShard


def rebalance_pipeline(count: int) -> list[dict[str, Any]]:
    """Build the aggregation that finds account pairs with more than ``count`` transfers."""
    return [
        {"$match": {"type": {"$in": ["inter-shard", "cross-shard"]}}},
        {
            "$project": {
                "pair": {
                    "$cond": {
                        "if": {"$lt": ["$sender", "$receiver"]},
                        "then": {"first": "$sender", "second": "$receiver"},
                        "else": {"first": "$receiver", "second": "$sender"},
                    }
                },
                "amount": 1,
                "type": 1,
                "participants": 1,
            }
        },
        {
            "$group": {
                "_id": "$pair",
                "transactionCount": {"$sum": 1},
                "totalAmount": {"$sum": "$amount"},
                "types": {"$addToSet": "$type"},
                "participants": {"$addToSet": "$participants"},
            }
        },
        {"$match": {"transactionCount": {"$gt": count}}},
        {
            "$project": {
                "_id": 0,
                "account1": "$_id.first",
                "account2": "$_id.second",
                "transactionCount": 1,
                "totalAmount": 1,
                "types": 1,
                "participants": {
                    "$reduce": {
                        "input": "$participants",
                        "initialValue": [],
                        "in": {"$setUnion": ["$$value", "$$this"]},
                    }
                },
            }
        },
        {"$sort": {"transactionCount": -1, "totalAmount": -1}},
    ]


class ShardStore:
    """The shards and sessions collections of the global database."""

    def __init__(self, shards: Any, sessions: Any, client: MongoClient | None = None) -> None:
        self.shards = shards
        self.sessions = sessions
        self._client = client

    @classmethod
    def connect(cls, uri: str, database: str) -> ShardStore:
        """Open the shards and sessions collections of a database."""
        client: MongoClient = MongoClient(uri)
        db = client[database]
        return cls(db["shards"], db["sessions"], client)

    def close(self) -> None:
        """Close the underlying connection, if this store owns one."""
        if self._client is not None:
            self._client.close()

    def __enter__(self) -> ShardStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def insert_shards(self, shards: list[ClientShard]) -> None:
        """Store client placements; ValueError if there are none."""
        records = [
            {
                "client": item.client,
                "shard": item.shard,
                "cluster": item.cluster,
                "init_balance": item.init_balance,
            }
            for item in shards
        ]
        if not records:
            raise ValueError("no client shards to insert")
        self.shards.insert_many(records)

    def aggregation(self, count: int) -> list[AggregationResult]:
        """Return account pairs with more than ``count`` transfers, busiest first."""
        return [
            AggregationResult(
                account1=str(doc.get("account1", "")),
                account2=str(doc.get("account2", "")),
                transaction_count=int(doc.get("transactionCount", 0)),
                total_amount=float(doc.get("totalAmount", 0)),
                types=list(doc.get("types") or []),
                participants=list(doc.get("participants") or []),
            )
            for doc in self.sessions.aggregate(rebalance_pipeline(count))
        ]