import pytest

from shardbank.tables import (
    average,
    parse_datastore_csv,
    parse_iptable,
    parse_shards_csv,
    parse_testcases_csv,
)


def test_parse_iptable(tmp_path):
    path = tmp_path / "iptable.txt"
    path.write_text("S1-localhost:6001\nS2-localhost:6002\nEC1-S1:S2\n")
    table = parse_iptable(path)
    assert table == {"S1": "localhost:6001", "S2": "localhost:6002", "EC1": "S1:S2"}


def test_parse_iptable_handles_crlf(tmp_path):
    path = tmp_path / "iptable.txt"
    path.write_bytes(b"client-localhost:5000\r\n")
    assert parse_iptable(path) == {"client": "localhost:5000"}


def test_parse_iptable_rejects_line_without_dash(tmp_path):
    path = tmp_path / "iptable.txt"
    path.write_text("S1-localhost:6001\nbroken\n")
    with pytest.raises(ValueError):
        parse_iptable(path)


def test_parse_iptable_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        parse_iptable(tmp_path / "absent.txt")


def test_parse_datastore_csv(tmp_path):
    path = tmp_path / "datastore.csv"
    path.write_text("client,balance\n1, 10\n2,7\n")
    assert parse_datastore_csv(path) == {"1": 10, "2": 7}


def test_parse_datastore_csv_rejects_non_number(tmp_path):
    path = tmp_path / "datastore.csv"
    path.write_text("client,balance\n1,ten\n")
    with pytest.raises(ValueError):
        parse_datastore_csv(path)


def test_parse_datastore_csv_empty_file(tmp_path):
    path = tmp_path / "datastore.csv"
    path.write_text("")
    with pytest.raises(ValueError):
        parse_datastore_csv(path)


def test_parse_shards_csv_drops_header(tmp_path):
    path = tmp_path / "shards.csv"
    path.write_text("shard,cluster,range\nD1,C1,1-1000\nD2,C2,1001-2000\n")
    assert parse_shards_csv(path) == [["D1", "C1", "1-1000"], ["D2", "C2", "1001-2000"]]


def _write_testcases(tmp_path):
    path = tmp_path / "tests.csv"
    path.write_text(
        '1,"(21, 22, 3)","[S1, S2, S4]","[S1, S5]"\n'
        ',"(23, 24, 2)",,\n'
        '2,"(1, 2, 5)","[S1]","[S1, S4, S7]"\n'
    )
    return path


def test_parse_testcases_groups_rows(tmp_path):
    cases = parse_testcases_csv(_write_testcases(tmp_path))
    assert sorted(cases) == ["1", "2"]
    first = cases["1"]
    assert first.live_servers == ["S1", "S2", "S4"]
    assert first.contact_servers == {"C1": "S1", "C2": "S5"}
    assert [(s.sender, s.receiver, s.amount) for s in first.sets] == [("21", "22", "3"), ("23", "24", "2")]


def test_parse_testcases_last_case_saved(tmp_path):
    cases = parse_testcases_csv(_write_testcases(tmp_path))
    last = cases["2"]
    assert last.live_servers == ["S1"]
    assert last.contact_servers == {"C1": "S1", "C2": "S4", "C3": "S7"}
    assert [(s.sender, s.receiver, s.amount) for s in last.sets] == [("1", "2", "5")]


def test_parse_testcases_empty_server_list(tmp_path):
    path = tmp_path / "tests.csv"
    path.write_text('1,"(1, 2, 5)",[],"[S1]"\n')
    assert parse_testcases_csv(path)["1"].live_servers == []


def test_parse_testcases_bad_transaction(tmp_path):
    path = tmp_path / "tests.csv"
    path.write_text('1,"(1, 2)","[S1]","[S1]"\n')
    with pytest.raises(ValueError):
        parse_testcases_csv(path)


def test_parse_testcases_empty_file(tmp_path):
    path = tmp_path / "tests.csv"
    path.write_text("")
    assert parse_testcases_csv(path) == {}


def test_average_empty():
    assert average([]) == 0


def test_average_equal_values():
    assert average([5.0, 5.0, 5.0]) == 5.0


def test_average_truncates():
    assert average([1.9, 2.9]) == 1.0


def test_average_within_bounds():
    values = [3.0, 8.0, 13.0, 21.0]
    assert min(values) <= average(values) <= max(values)