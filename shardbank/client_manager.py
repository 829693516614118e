"""The client's transaction manager: sends transactions, tracks sessions and runs commands."""

from __future__ import annotations

import logging
import queue
import re
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

from shardbank.enums import ClientPacketLabel
from shardbank.memory import SessionCounter
from shardbank.messages import AckMsg, ReplyMsg
from shardbank.models import Packet, Session, Testcase
from shardbank.tables import average, parse_testcases_csv

_log = logging.getLogger(__name__)

_INTEGER = re.compile(r"[+-]?[0-9]+")
_CLUSTER = re.compile(r"clusters:\s*\[([^\s\]]+)")
_ACCOUNTS = re.compile(r"accounts:\s*\[([^\]]+)\]")

INTER_SHARD = "inter-shard"
CROSS_SHARD = "cross-shard"


class CommandError(Exception):
    """A client command could not be carried out; the message is meant for the user."""


def _atoi_or_zero(text: str) -> int:
    text = text.strip()
    return int(text) if _INTEGER.fullmatch(text) else 0


class Manager:
    """Handles the client's commands and the replies and acks coming back from clusters.

    ``dialer`` makes the calls to cluster nodes and exposes their ``nodes``
    table; ``storage`` maps clients to clusters and keeps sessions. Finished
    sessions are put on :attr:`output`.
    """

    def __init__(
        self,
        dialer: Any,
        storage: Any,
        sessions: SessionCounter | None = None,
        clock: Callable[[], float] = time.monotonic,
        timeout: float = 5.0,
        watch_timeouts: bool = False,
    ) -> None:
        self.dialer = dialer
        self.storage = storage
        self.sessions = sessions or SessionCounter()
        self.output: queue.Queue[Session] = queue.Queue()
        self.cache: dict[int, Session] = {}
        self.tests: dict[str, Testcase] = {}
        self.index = 0
        self.throughput: list[float] = []
        self.latency: list[float] = []

        self._clock = clock
        self._timeout = timeout
        self._mutex = threading.RLock()
        self._stop = threading.Event()
        self._watcher: threading.Thread | None = None

        self.dialer.set_contacts(self.dialer.nodes)

        if watch_timeouts:
            self._watcher = threading.Thread(target=self._watch_timeouts, name="timeouts", daemon=True)
            self._watcher.start()

    def close(self) -> None:
        """Stop the timeout watcher, if one runs."""
        self._stop.set()
        if self._watcher is not None:
            self._watcher.join()
            self._watcher = None

    def __enter__(self) -> Manager:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _watch_timeouts(self) -> None:
        while not self._stop.is_set():
            self.resend_timeouts()
            self._stop.wait(self._timeout)

    def _servers(self, key: str) -> list[str]:
        return self.dialer.nodes.get(key, "").split(":")

    def _shard_of(self, client: str, prefix: str = "database failed: ") -> str:
        try:
            return self.storage.client_shard(client)
        except Exception as exc:
            raise CommandError(f"{prefix}{exc}") from exc

    # tests

    def all_tests(self) -> list[tuple[str, Testcase]]:
        """Return the loaded test sets ordered by their key."""
        return sorted(self.tests.items(), key=lambda item: item[0])

    def next_test(self) -> tuple[Testcase, int] | None:
        """Advance to the next test set; None when all have been run."""
        if self.index == len(self.tests):
            return None
        self.index += 1
        testcase = self.tests.get(str(self.index))
        if testcase is None:
            return None
        return testcase, self.index

    def update_nodes_for_test(self, servers: list[str], contacts: dict[str, str]) -> None:
        """Set the contact servers, unblock the live servers and block all others."""
        self.dialer.set_contacts(contacts)
        for server in self._servers("all"):
            if server in servers:
                self.dialer.unblock(server)
            else:
                self.dialer.block(server)

    # incoming packets

    def process(self, packet: Packet) -> bool:
        """Dispatch a packet from a cluster; False if its label is unknown."""
        if packet.label == ClientPacketLabel.REPLY:
            self.handle_reply(packet.payload)
        elif packet.label == ClientPacketLabel.ACK:
            self.handle_ack(packet.payload)
        else:
            return False
        return True

    def _finish(self, session: Session) -> None:
        finished = self._clock()
        self.output.put(session)
        elapsed = int((finished - session.started_at) * 1000)
        # a round shorter than a millisecond counts as one to keep the rate finite
        divisor = max(elapsed, 1)
        self.throughput.append(float(1000 // divisor))
        self.latency.append(float(elapsed))

    def handle_reply(self, msg: ReplyMsg) -> None:
        """Record a reply; once every participant replied, finish the session."""
        with self._mutex:
            session = self.cache.get(int(msg.session_id))
            if session is None:
                return
            session.replies.append(msg)
            if len(session.replies) == len(session.participants):
                session.text = msg.text
                self._finish(session)

    def handle_ack(self, msg: AckMsg) -> None:
        """Record a vote; once all voted, commit everywhere or abort everywhere."""
        with self._mutex:
            session = self.cache.get(int(msg.session_id))
            if session is None:
                return
            session.acks.append(msg)
            if len(session.acks) != len(session.participants):
                return

            if any(item.is_aborted for item in session.acks):
                session.text = "abort"
                for address in session.participants:
                    try:
                        self.dialer.abort(address, session.id)
                    except Exception as exc:
                        _log.warning("failed to send abort message: %s", exc)
                self._finish(session)
                return

            for address in session.participants:
                try:
                    self.dialer.commit(address, session.id)
                except Exception as exc:
                    _log.warning("failed to send commit message: %s", exc)

    def resend_timeouts(self) -> list[int]:
        """Resend every unfinished session that has waited too long; return their ids."""
        resent: list[int] = []
        with self._mutex:
            sessions = list(self.cache.items())
        for key, session in sessions:
            if session.text or self._clock() - session.started_at < self._timeout:
                continue
            session.started_at = self._clock()
            resent.append(key)
            if session.type == INTER_SHARD:
                calls = [
                    (self.dialer.request, (session.participants[0], session.sender, session.receiver,
                                           session.amount, key)),
                ]
            else:
                calls = [
                    (self.dialer.prepare, (session.participants[0], session.sender, session.sender,
                                           session.receiver, session.amount, key)),
                    (self.dialer.prepare, (session.participants[1], session.receiver, session.sender,
                                           session.receiver, session.amount, key)),
                ]
            for call, arguments in calls:
                try:
                    call(*arguments)
                except Exception as exc:
                    _log.warning("failed to resend the request for trx %d: %s", key, exc)
        return resent

    # commands

    def performance(self) -> str:
        """Return the average throughput and latency of finished sessions."""
        return f"throughput: {average(self.throughput):f} tps, latency: {average(self.latency):f} ms"

    def print_balance(self, args: list[str]) -> str:
        """Return a client's balance on every server of its cluster."""
        if len(args) < 1:
            raise CommandError("not enough arguments")
        client = args[0]
        cluster = self._shard_of(client)

        lines = [f"--  server  -  {client}  --\n"]
        for service in self._servers(f"E{cluster}"):
            try:
                balance = self.dialer.print_balance(service, client)
            except Exception as exc:
                raise CommandError(f"server failed: {exc}") from exc
            lines.append(f"     {service}     -  {balance}\n")
        return "".join(lines)

    def print_logs(self, args: list[str]) -> list[str]:
        """Return the write-ahead logs of a server."""
        if len(args) < 1:
            raise CommandError("not enough arguments")
        try:
            return list(self.dialer.print_logs(args[0]))
        except Exception as exc:
            raise CommandError(str(exc)) from exc

    def _datastore_lines(self, server: str) -> list[str]:
        try:
            entries = self.dialer.print_datastore(server)
        except Exception as exc:
            raise CommandError(str(exc)) from exc
        lines = []
        for entry in entries:
            try:
                session = self.storage.session_by_id(int(entry.session_id))
            except Exception as exc:
                _log.warning("failed to get session %d: %s", entry.session_id, exc)
                continue
            lines.append(
                f"\t[<{entry.ballot_number_sequence}, {entry.ballot_number_pid}>, "
                f"({session.sender}, {session.receiver}, {session.amount})]"
            )
        return lines

    def print_datastore(self, args: list[str]) -> list[str]:
        """Return the committed transactions of a server."""
        if len(args) < 1:
            raise CommandError("not enough arguments")
        return self._datastore_lines(args[0])

    def print_datastores(self, args: list[str] | None = None) -> list[str]:
        """Return the committed transactions of every server, one block per server."""
        return [
            f"{server}:\n" + "".join(f"{line}\n" for line in self._datastore_lines(server))
            for server in self._servers("all")
        ]

    def transaction(self, args: list[str]) -> str:
        """Send a transfer of ``args[2]`` from ``args[0]`` to ``args[1]`` and start tracking it."""
        if len(args) < 3:
            raise CommandError("not enough arguments")
        sender, receiver = args[0], args[1]
        amount = _atoi_or_zero(args[2])
        session_id = self.sessions.next()

        sender_cluster = self._shard_of(sender)
        receiver_cluster = self._shard_of(receiver)

        session = Session(id=session_id, sender=sender, receiver=receiver, amount=amount)

        if sender_cluster == receiver_cluster:
            session.type = INTER_SHARD
            session.participants = [sender_cluster]
            try:
                self.dialer.request(sender_cluster, sender, receiver, amount, session_id)
            except Exception as exc:
                raise CommandError(f"server failed: {exc}") from exc
        else:
            session.type = CROSS_SHARD
            session.participants = [sender_cluster, receiver_cluster]
            try:
                self.dialer.prepare(sender_cluster, sender, sender, receiver, amount, session_id)
            except Exception as exc:
                raise CommandError(f"sender server failed: {exc}") from exc
            try:
                self.dialer.prepare(receiver_cluster, receiver, sender, receiver, amount, session_id)
            except Exception as exc:
                raise CommandError(f"receiver server failed: {exc}") from exc

        session.started_at = self._clock()
        with self._mutex:
            self.cache[session_id] = session

        try:
            self.storage.insert_session(session)
        except Exception as exc:
            _log.warning("failed to store cross-shard metric: %s", exc)

        return f"transaction {session_id} ({sender}, {receiver}, {amount}): sent"

    def round_trip(self, args: list[str]) -> str:
        """Send an empty request to a client's cluster."""
        if len(args) < 1:
            raise CommandError("not enough arguments")
        cluster = self._shard_of(args[0])
        try:
            self.dialer.request(cluster, args[0], "", 0, 0)
        except Exception as exc:
            raise CommandError(f"server failed: {exc}") from exc
        return "roundtrip sent"

    def block(self, args: list[str]) -> str:
        """Block a server."""
        if len(args) < 1:
            raise CommandError("not enough arguments")
        try:
            self.dialer.block(args[0])
        except Exception as exc:
            raise CommandError(f"server failed: {exc}") from exc
        return "blocked"

    def unblock(self, args: list[str]) -> str:
        """Unblock a server."""
        if len(args) < 1:
            raise CommandError("not enough arguments")
        try:
            self.dialer.unblock(args[0])
        except Exception as exc:
            raise CommandError(f"server failed: {exc}") from exc
        return "unblocked"

    def load_tests(self, args: list[str]) -> str:
        """Load test sets from a CSV file and rewind to the first one."""
        if len(args) < 1:
            raise CommandError("not enough arguments")
        path = args[0]
        try:
            tests = parse_testcases_csv(path)
        except OSError as exc:
            raise CommandError(f"failed to open the CSV file {path}: {exc}") from exc
        except (ValueError, UnicodeDecodeError) as exc:
            raise CommandError(f"failed to read CSV file {path}: {exc}") from exc
        self.tests = tests
        self.index = 0
        return f"load {len(tests)} testsets"

    def _move(self, account: str, source: str, target: str) -> None:
        balance = 0
        for service in self._servers(f"E{source}"):
            try:
                _, balance = self.dialer.rebalance(service, account, 0, False)
            except Exception as exc:
                raise CommandError(str(exc)) from exc
        for service in self._servers(f"E{target}"):
            try:
                self.dialer.rebalance(service, account, balance, True)
            except Exception as exc:
                raise CommandError(str(exc)) from exc
        try:
            self.storage.update_client_shard(account, target)
        except Exception as exc:
            raise CommandError(str(exc)) from exc

    def shards_rebalance(self, args: list[str]) -> str:
        """Move accounts between clusters as listed in a new-schema file."""
        if len(args) < 1:
            raise CommandError("not enough arguments")
        try:
            handle = open(Path(args[0]), encoding="utf-8")
        except OSError as exc:
            raise CommandError(str(exc)) from exc

        first_cluster = account1 = account2 = ""
        with handle:
            for raw in handle:
                text = raw.rstrip("\r\n")

                cluster_match = _CLUSTER.search(text)
                if cluster_match:
                    first_cluster = cluster_match.group(1)
                    print("cluster:", first_cluster)

                account_match = _ACCOUNTS.search(text)
                if account_match:
                    numbers = account_match.group(1).split(",")
                    for position, number in enumerate(numbers, start=1):
                        if _INTEGER.fullmatch(number.strip()):
                            print(f"- account {position}: {int(number.strip())}")
                    if len(numbers) < 2:
                        raise CommandError(f"expected two accounts in: {text}")
                    account1 = numbers[0].strip()
                    account2 = numbers[1].strip()

                cluster1 = self._shard_of(account1, prefix="")
                cluster2 = self._shard_of(account2, prefix="")

                if first_cluster == cluster1:
                    self._move(account2, cluster2, cluster1)
                else:
                    self._move(account1, cluster1, cluster2)

        return "rebalanced"