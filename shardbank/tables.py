"""Readers for the iptable, datastore, shard and test-case files."""

from __future__ import annotations

import csv
import re
from pathlib import Path

from shardbank.models import Testcase, Testset

_INTEGER = re.compile(r"[+-]?[0-9]+")


def _atoi(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"invalid integer: {text!r}")
    return int(text)


def _read_csv(path: str | Path) -> list[list[str]]:
    with open(path, newline="", encoding="utf-8") as handle:
        return [row for row in csv.reader(handle) if row]


def parse_iptable(path: str | Path) -> dict[str, str]:
    """Read lines of the form ``name-address`` into a mapping."""
    table: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for number, line in enumerate(handle, start=1):
            parts = line.rstrip("\r\n").split("-")
            if len(parts) < 2:
                raise ValueError(f"{path}:{number}: expected 'name-address', got {line.strip()!r}")
            table[parts[0]] = parts[1]
    return table


def parse_datastore_csv(path: str | Path) -> dict[str, int]:
    """Read client names and balances from a CSV file with a header row."""
    rows = _read_csv(path)
    if not rows:
        raise ValueError(f"CSV file {path} has no header row")
    balances: dict[str, int] = {}
    for row in rows[1:]:
        if len(row) < 2:
            raise ValueError(f"CSV file {path}: row {row!r} has no balance")
        balances[row[0]] = _atoi(row[1].strip())
    return balances


def parse_shards_csv(path: str | Path) -> list[list[str]]:
    """Read the shard rows of a CSV file, dropping its header row."""
    rows = _read_csv(path)
    if not rows:
        raise ValueError(f"CSV file {path} has no header row")
    return rows[1:]


def _strip(text: str, chars: str) -> str:
    for char in chars:
        text = text.replace(char, "")
    return text


def _testset(field: str) -> Testset:
    parts = _strip(field, "()").split(", ")
    if len(parts) < 3:
        raise ValueError(f"invalid transaction: {field!r}")
    sender, receiver, amount = (part.strip() for part in parts[:3])
    return Testset(sender=sender, receiver=receiver, amount=amount)


def parse_testcases_csv(path: str | Path) -> dict[str, Testcase]:
    """Read test scenarios keyed by their set number.

    A row with a set number starts a scenario and names its live and contact
    servers; rows with an empty first field add transactions to it.
    """
    cases: dict[str, Testcase] = {}
    index = ""
    current = Testcase()

    for row in _read_csv(path):
        if len(row) < 2:
            raise ValueError(f"CSV file {path}: row {row!r} has no transaction")
        if row[0] != "":
            if len(row) < 4:
                raise ValueError(f"CSV file {path}: row {row!r} lacks server lists")
            if index != "":
                cases[index] = current
            index = row[0]
            servers = [item for item in _strip(row[2], "[]").split(", ") if item != ""]
            contacts = {
                f"C{number}": value for number, value in enumerate(_strip(row[3], "[]").split(", "), start=1)
            }
            current = Testcase(contact_servers=contacts, live_servers=servers)
        current.sets.append(_testset(row[1]))

    if cases or current.sets:
        cases[index] = current
    return cases


def average(values) -> float:
    """Mean of the values with each truncated to an integer and integer division."""
    items = [int(value) for value in values]
    if not items:
        return 0.0
    total = sum(items)
    quotient = abs(total) // len(items)
    return float(quotient if total >= 0 else -quotient)