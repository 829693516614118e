import pytest

from shardbank.models import ClientShard
from shardbank.shard_store import ShardStore, rebalance_pipeline


class FakeCollection:
    def __init__(self, results=None):
        self.docs = []
        self.results = results or []
        self.pipelines = []

    def insert_many(self, docs):
        self.docs.extend(dict(doc) for doc in docs)

    def aggregate(self, pipeline):
        self.pipelines.append(pipeline)
        return iter(self.results)


def test_pipeline_filters_by_count_and_types():
    pipeline = rebalance_pipeline(3)
    assert len(pipeline) == 6
    assert pipeline[0]["$match"]["type"]["$in"] == ["inter-shard", "cross-shard"]
    assert pipeline[3]["$match"]["transactionCount"]["$gt"] == 3
    assert list(pipeline[5]["$sort"].items()) == [("transactionCount", -1), ("totalAmount", -1)]


def test_insert_shards_stores_documents():
    shards = FakeCollection()
    store = ShardStore(shards, FakeCollection())
    store.insert_shards([ClientShard(client="1", shard="D1", cluster="C1", init_balance=10)])
    assert shards.docs == [{"client": "1", "shard": "D1", "cluster": "C1", "init_balance": 10}]


def test_insert_shards_rejects_empty():
    store = ShardStore(FakeCollection(), FakeCollection())
    with pytest.raises(ValueError):
        store.insert_shards([])


def test_aggregation_decodes_results():
    sessions = FakeCollection(
        [
            {
                "account1": "1001",
                "account2": "2001",
                "transactionCount": 4,
                "totalAmount": 12,
                "types": ["cross-shard"],
                "participants": ["C1", "C2"],
            }
        ]
    )
    store = ShardStore(FakeCollection(), sessions)
    results = store.aggregation(2)
    assert len(results) == 1
    result = results[0]
    assert (result.account1, result.account2) == ("1001", "2001")
    assert result.transaction_count == 4
    assert result.total_amount == 12.0
    assert result.participants == ["C1", "C2"]
    assert sessions.pipelines[0] == rebalance_pipeline(2)