import pytest

from shardbank.client_storage import SessionStore
from shardbank.models import Session
from shardbank.storage import RecordNotFound


class FakeCollection:
    def __init__(self, docs=None):
        self.docs = [dict(doc) for doc in docs or []]

    def _matches(self, doc, query):
        return all(doc.get(key) == value for key, value in query.items())

    def find_one(self, query, projection=None):
        for doc in self.docs:
            if self._matches(doc, query):
                return dict(doc)
        return None

    def insert_one(self, doc):
        self.docs.append(dict(doc))

    def update_many(self, query, update):
        for doc in self.docs:
            if self._matches(doc, query):
                doc.update(update.get("$set", {}))


def make_store(shards=None):
    return SessionStore(FakeCollection(shards), FakeCollection())


def test_client_shard_returns_cluster():
    store = make_store([{"client": "1001", "cluster": "C1"}, {"client": "2001", "cluster": "C2"}])
    assert store.client_shard("2001") == "C2"
    assert store.client_shard("1001") == "C1"


def test_client_shard_missing_raises():
    store = make_store()
    with pytest.raises(RecordNotFound, match="no shard found for client: 42"):
        store.client_shard("42")


def test_update_client_shard_moves_client():
    store = make_store([{"client": "1001", "cluster": "C1"}])
    store.update_client_shard("1001", "C3")
    assert store.client_shard("1001") == "C3"


def test_session_round_trip():
    store = make_store()
    session = Session(id=77, sender="1001", receiver="2001", amount=5)
    session.type = "cross-shard"
    session.participants = ["C1", "C2"]
    store.insert_session(session)
    loaded = store.session_by_id(77)
    assert (loaded.id, loaded.sender, loaded.receiver, loaded.amount) == (77, "1001", "2001", 5)
    assert loaded.participants == ["C1", "C2"]


def test_session_by_id_missing_raises():
    store = make_store()
    with pytest.raises(RecordNotFound, match="no session found for id: 9"):
        store.session_by_id(9)