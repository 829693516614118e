"""The shard tool: loads shard placements and suggests a rebalanced schema."""

from __future__ import annotations

import re
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from shardbank.models import AggregationResult, Shard
from shardbank.shard_store import ShardStore
from shardbank.tables import parse_shards_csv

_INTEGER = re.compile(r"[+-]?[0-9]+")

INITIAL_BALANCE = 10


class CliError(Exception):
    """A command of the shard tool failed."""


def _atoi(text: str) -> int:
    text = text.strip()
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"invalid number: {text!r}")
    return int(text)


def build_shards(rows: list[list[str]]) -> list[Shard]:
    """Turn rows of (name, cluster, start-end) into shards of clients at the starting balance."""
    shards = []
    for row in rows:
        parts = row[2].split("-")
        try:
            if len(parts) < 2:
                raise ValueError(f"range has no end: {row[2]!r}")
            start, end = _atoi(parts[0]), _atoi(parts[1])
        except ValueError as exc:
            raise CliError(f"failed to parse range {row[0]}: {exc}") from exc
        shards.append(
            Shard(
                name=row[0].strip(),
                cluster=row[1].strip(),
                start_id=start,
                end_id=end,
                clients={str(i): INITIAL_BALANCE for i in range(start, end + 1)},
            )
        )
    return shards


def format_schema_record(result: AggregationResult) -> str:
    """Render one suggested move as a line of the new-schema file."""
    return (
        f"{{clusters: [{' '.join(result.participants)}], "
        f"accounts: [{result.account1}, {result.account2}], "
        f"transactions: {result.transaction_count}, total: {result.total_amount:2f}}}\n"
    )


def _check_arguments(args: list[str]) -> None:
    if len(args) != 3:
        raise CliError(f"mismatch input arguments: count {len(args)} expected 3")


def _open(connect: Callable[[str, str], Any], uri: str, database: str) -> Any:
    try:
        return connect(uri, database)
    except Exception as exc:
        raise CliError(f"open database failed: {exc}") from exc


class ShardHandler:
    """``shard <shards.csv> <mongodb-uri> <database>``: store the client placements."""

    name = "shard"

    def __init__(self, connect: Callable[[str, str], Any] = ShardStore.connect) -> None:
        self._connect = connect

    def execute(self, args: list[str]) -> None:
        """Read the shards file and insert one placement per client."""
        _check_arguments(args)
        store = _open(self._connect, args[1], args[2])

        try:
            rows = parse_shards_csv(args[0])
        except (OSError, ValueError, UnicodeDecodeError) as exc:
            raise CliError(f"failed to parse shards: {exc}") from exc

        for shard in build_shards(rows):
            try:
                store.insert_shards(shard.dto_clients())
            except Exception as exc:
                raise CliError(f"failed to inserts {shard.name} to database: {exc}") from exc
            print(
                f"shard {shard.name} mapped to cluster {shard.cluster} with "
                f"{len(shard.clients)} clients ({shard.start_id}-{shard.end_id})."
            )


class RebalanceHandler:
    """``rebalance <count> <mongodb-uri> <database>``: write suggested moves to a schema file."""

    name = "rebalance"

    def __init__(
        self,
        connect: Callable[[str, str], Any] = ShardStore.connect,
        output: str | Path = "new-schema.txt",
    ) -> None:
        self._connect = connect
        self._output = Path(output)

    def execute(self, args: list[str]) -> None:
        """Write every cross-shard pair busier than the given count to the schema file."""
        _check_arguments(args)
        store = _open(self._connect, args[1], args[2])

        try:
            count = _atoi(args[0])
        except ValueError as exc:
            raise CliError(f"input argument is not a number: {exc}") from exc

        try:
            results = store.aggregation(count)
        except Exception as exc:
            raise CliError(f"database failed: {exc}") from exc

        try:
            with self._output.open("w", encoding="utf-8") as handle:
                for result in results:
                    if result.types and result.types[0] == "cross-shard":
                        handle.write(format_schema_record(result))
        except OSError as exc:
            raise CliError(f"failed to store new-schema file: {exc}") from exc


def main(argv: list[str] | None = None) -> int:
    """Run the named command with the remaining arguments."""
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        raise SystemExit("at least one argument is needed")

    for handler in (ShardHandler(), RebalanceHandler()):
        if handler.name == args[0]:
            try:
                handler.execute(args[1:])
            except CliError as exc:
                print(exc, file=sys.stderr)
                return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())