from types import SimpleNamespace

import pytest

from shardbank.client_manager import CROSS_SHARD, INTER_SHARD, CommandError, Manager
from shardbank.enums import ClientPacketLabel, PacketLabel, Response
from shardbank.memory import SessionCounter
from shardbank.messages import AckMsg, ReplyMsg
from shardbank.models import Packet, Session


class FakeDialer:
    def __init__(self, nodes):
        self.nodes = nodes
        self.contacts = None
        self.calls = []
        self.fail = set()
        self.balances = {}
        self.logs = []
        self.datastores = {}

    def _call(self, name, *args):
        self.calls.append((name, *args))
        if name in self.fail:
            raise RuntimeError("unreachable")

    def set_contacts(self, contacts):
        self.contacts = contacts

    def request(self, target, sender, receiver, amount, session_id):
        self._call("request", target, sender, receiver, amount, session_id)

    def prepare(self, target, client, sender, receiver, amount, session_id):
        self._call("prepare", target, client, sender, receiver, amount, session_id)

    def commit(self, target, session_id):
        self._call("commit", target, session_id)

    def abort(self, target, session_id):
        self._call("abort", target, session_id)

    def print_balance(self, target, client):
        self._call("print_balance", target, client)
        return self.balances[client]

    def print_logs(self, target):
        self._call("print_logs", target)
        return self.logs

    def print_datastore(self, target):
        self._call("print_datastore", target)
        return self.datastores.get(target, [])

    def block(self, target):
        self._call("block", target)

    def unblock(self, target):
        self._call("unblock", target)

    def rebalance(self, target, record, value, is_add):
        self._call("rebalance", target, record, value, is_add)
        return record, self.balances.get(record, 0)


class FakeStore:
    def __init__(self, shards):
        self.shards = dict(shards)
        self.sessions = {}

    def client_shard(self, client):
        if client not in self.shards:
            raise LookupError(f"no shard found for client: {client}")
        return self.shards[client]

    def update_client_shard(self, client, shard):
        self.shards[client] = shard

    def insert_session(self, session):
        self.sessions[session.id] = session

    def session_by_id(self, session_id):
        if session_id not in self.sessions:
            raise LookupError(f"no session found for id: {session_id}")
        return self.sessions[session_id]


NODES = {"all": "S1:S2:S3", "EC1": "S1:S2", "EC2": "S3", "client": "localhost:5000"}


@pytest.fixture
def now():
    return [0.0]


@pytest.fixture
def setup(now):
    dialer = FakeDialer(dict(NODES))
    store = FakeStore({"A": "C1", "B": "C1", "X": "C2"})
    manager = Manager(dialer, store, sessions=SessionCounter(start=100), clock=lambda: now[0])
    return manager, dialer, store


def test_constructor_uses_nodes_as_contacts(setup):
    manager, dialer, _ = setup
    assert dialer.contacts == NODES


def test_transaction_needs_three_arguments(setup):
    manager, _, _ = setup
    with pytest.raises(CommandError, match="not enough arguments"):
        manager.transaction(["A", "B"])


def test_inter_shard_transaction(setup):
    manager, dialer, store = setup
    assert manager.transaction(["A", "B", "5"]) == "transaction 100 (A, B, 5): sent"
    assert dialer.calls == [("request", "C1", "A", "B", 5, 100)]
    assert store.sessions[100].type == INTER_SHARD
    assert manager.cache[100].participants == ["C1"]


def test_cross_shard_transaction(setup):
    manager, dialer, _ = setup
    manager.transaction(["A", "X", "3"])
    assert dialer.calls == [
        ("prepare", "C1", "A", "A", "X", 3, 100),
        ("prepare", "C2", "X", "A", "X", 3, 100),
    ]
    assert manager.cache[100].type == CROSS_SHARD
    assert manager.cache[100].participants == ["C1", "C2"]


def test_transaction_unknown_client(setup):
    manager, dialer, _ = setup
    with pytest.raises(CommandError, match="^database failed: "):
        manager.transaction(["A", "nobody", "1"])
    assert dialer.calls == []


def test_transaction_server_failure_is_not_cached(setup):
    manager, dialer, _ = setup
    dialer.fail.add("request")
    with pytest.raises(CommandError, match="^server failed: "):
        manager.transaction(["A", "B", "1"])
    assert manager.cache == {}


def test_reply_finishes_session(setup, now):
    manager, _, _ = setup
    manager.transaction(["A", "B", "5"])
    now[0] = 0.5
    assert manager.process(Packet(ClientPacketLabel.REPLY, ReplyMsg(session_id=100, text=Response.OK.value)))
    session = manager.output.get_nowait()
    assert session.id == 100
    assert session.text == Response.OK.value
    assert manager.latency == [500.0]
    assert len(manager.throughput) == 1


def test_reply_for_unknown_session_is_ignored(setup):
    manager, _, _ = setup
    manager.handle_reply(ReplyMsg(session_id=999, text="x"))
    assert manager.output.empty()


def test_unknown_label_is_not_processed(setup):
    manager, _, _ = setup
    assert manager.process(Packet(PacketLabel.PAXOS_PING, None)) is False


def test_all_acks_commit(setup):
    manager, dialer, _ = setup
    manager.transaction(["A", "X", "3"])
    dialer.calls.clear()
    manager.handle_ack(AckMsg(session_id=100, is_aborted=False))
    assert dialer.calls == []
    manager.handle_ack(AckMsg(session_id=100, is_aborted=False))
    assert dialer.calls == [("commit", "C1", 100), ("commit", "C2", 100)]
    assert manager.output.empty()


def test_aborted_ack_aborts_everywhere(setup):
    manager, dialer, _ = setup
    manager.transaction(["A", "X", "3"])
    dialer.calls.clear()
    manager.process(Packet(ClientPacketLabel.ACK, AckMsg(session_id=100, is_aborted=False)))
    manager.process(Packet(ClientPacketLabel.ACK, AckMsg(session_id=100, is_aborted=True)))
    assert dialer.calls == [("abort", "C1", 100), ("abort", "C2", 100)]
    assert manager.output.get_nowait().text == "abort"


def test_resend_timeouts(setup, now):
    manager, dialer, _ = setup
    manager.transaction(["A", "B", "5"])
    manager.transaction(["A", "X", "3"])
    dialer.calls.clear()
    assert manager.resend_timeouts() == []
    now[0] = 5.0
    assert sorted(manager.resend_timeouts()) == [100, 101]
    assert ("request", "C1", "A", "B", 5, 100) in dialer.calls
    assert ("prepare", "C2", "X", "A", "X", 3, 101) in dialer.calls
    assert manager.resend_timeouts() == []


def test_finished_session_is_not_resent(setup, now):
    manager, _, _ = setup
    manager.transaction(["A", "B", "5"])
    manager.handle_reply(ReplyMsg(session_id=100, text=Response.FAILED.value))
    now[0] = 10.0
    assert manager.resend_timeouts() == []


def test_performance_without_sessions(setup):
    manager, _, _ = setup
    assert manager.performance() == "throughput: 0.000000 tps, latency: 0.000000 ms"


def test_print_balance(setup):
    manager, dialer, _ = setup
    dialer.balances["A"] = 7
    assert manager.print_balance(["A"]) == "--  server  -  A  --\n     S1     -  7\n     S2     -  7\n"


def test_print_balance_server_failure(setup):
    manager, dialer, _ = setup
    dialer.fail.add("print_balance")
    with pytest.raises(CommandError, match="^server failed: "):
        manager.print_balance(["A"])


def test_print_logs(setup):
    manager, dialer, _ = setup
    dialer.logs = ["first", "second"]
    assert manager.print_logs(["S1"]) == ["first", "second"]
    with pytest.raises(CommandError, match="not enough arguments"):
        manager.print_logs([])


def test_print_datastore(setup):
    manager, dialer, store = setup
    store.sessions[7] = Session(id=7, sender="A", receiver="B", amount=4)
    dialer.datastores["S1"] = [
        SimpleNamespace(session_id=7, ballot_number_sequence=2, ballot_number_pid="S1"),
        SimpleNamespace(session_id=8, ballot_number_sequence=3, ballot_number_pid="S1"),
    ]
    assert manager.print_datastore(["S1"]) == ["\t[<2, S1>, (A, B, 4)]"]


def test_print_datastores(setup):
    manager, dialer, store = setup
    store.sessions[7] = Session(id=7, sender="A", receiver="B", amount=4)
    dialer.datastores["S2"] = [SimpleNamespace(session_id=7, ballot_number_sequence=2, ballot_number_pid="S1")]
    assert manager.print_datastores([]) == ["S1:\n", "S2:\n\t[<2, S1>, (A, B, 4)]\n", "S3:\n"]


def test_block_and_unblock(setup):
    manager, dialer, _ = setup
    assert manager.block(["S2"]) == "blocked"
    assert manager.unblock(["S2"]) == "unblocked"
    assert dialer.calls == [("block", "S2"), ("unblock", "S2")]
    dialer.fail.add("block")
    with pytest.raises(CommandError, match="^server failed: "):
        manager.block(["S2"])


def test_round_trip(setup):
    manager, dialer, _ = setup
    assert manager.round_trip(["X"]) == "roundtrip sent"
    assert dialer.calls == [("request", "C2", "X", "", 0, 0)]


def test_update_nodes_for_test(setup):
    manager, dialer, _ = setup
    contacts = {"C1": "S1", "C2": "S3"}
    manager.update_nodes_for_test(["S1", "S3"], contacts)
    assert dialer.contacts == contacts
    assert dialer.calls == [("unblock", "S1"), ("block", "S2"), ("unblock", "S3")]


def test_load_and_iterate_tests(setup, tmp_path):
    manager, _, _ = setup
    path = tmp_path / "tests.csv"
    path.write_text(
        '1,"(A, B, 5)","[S1, S2]","[S1, S3]"\n'
        ',"(B, A, 2)",,\n'
        '2,"(A, X, 1)","[S1]","[S1, S3]"\n'
    )
    assert manager.load_tests([str(path)]) == "load 2 testsets"
    assert [key for key, _ in manager.all_tests()] == ["1", "2"]

    first, index = manager.next_test()
    assert index == 1
    assert first.live_servers == ["S1", "S2"]
    assert len(first.sets) == 2
    second, index = manager.next_test()
    assert index == 2
    assert second.sets[0].receiver == "X"
    assert manager.next_test() is None


def test_next_test_without_tests(setup):
    manager, _, _ = setup
    assert manager.next_test() is None


def test_load_tests_missing_file(setup, tmp_path):
    manager, _, _ = setup
    with pytest.raises(CommandError, match="failed to open the CSV file"):
        manager.load_tests([str(tmp_path / "missing.csv")])


def test_shards_rebalance_moves_second_account(setup, tmp_path, capsys):
    manager, dialer, store = setup
    dialer.balances["X"] = 9
    path = tmp_path / "new-schema.txt"
    path.write_text("{clusters: [C1 C2], accounts: [A, X], transactions: 3, total: 10.000000}\n")
    assert manager.shards_rebalance([str(path)]) == "rebalanced"
    assert store.shards["X"] == "C1"
    assert dialer.calls == [
        ("rebalance", "S3", "X", 0, False),
        ("rebalance", "S1", "X", 9, True),
        ("rebalance", "S2", "X", 9, True),
    ]
    assert "cluster: C1" in capsys.readouterr().out


def test_shards_rebalance_moves_first_account(setup, tmp_path):
    manager, dialer, store = setup
    dialer.balances["A"] = 4
    path = tmp_path / "new-schema.txt"
    path.write_text("{clusters: [C2 C1], accounts: [A, X], transactions: 3, total: 10.000000}\n")
    manager.shards_rebalance([str(path)])
    assert store.shards["A"] == "C2"
    assert dialer.calls[-1] == ("rebalance", "S3", "A", 4, True)


def test_shards_rebalance_missing_file(setup, tmp_path):
    manager, _, _ = setup
    with pytest.raises(CommandError):
        manager.shards_rebalance([str(tmp_path / "absent.txt")])