"""Applies decided transactions to a node's datastore and answers the client."""

from __future__ import annotations

import logging
from typing import Any

from shardbank.enums import Response, WALMessage
from shardbank.locks import LockManager
from shardbank.memory import SharedMemory
from shardbank.messages import CommitMsg, PrepareMsg, RequestMsg
from shardbank.models import Log


class DatabaseHandler:
    """Executes intra-shard requests and the two-phase-commit steps of cross-shard ones."""

    def __init__(
        self,
        client: Any,
        locks: LockManager,
        logger: logging.Logger | None,
        memory: SharedMemory,
        storage: Any,
    ) -> None:
        self._client = client
        self._locks = locks
        self._logger = logger or logging.getLogger(__name__)
        self._memory = memory
        self._storage = storage

    def _ballot(self, session_id: int) -> tuple[int, str]:
        ballot = self._memory.session_ballot(session_id)
        if ballot is None:
            return 0, ""
        return ballot.sequence, ballot.node_id

    def _log(self, session_id: int, message: WALMessage, record: str = "", new_value: int = 0) -> Log:
        sequence, pid = self._ballot(session_id)
        return Log(
            message=message.value,
            record=record,
            session_id=session_id,
            new_value=new_value,
            ballot_number_sequence=sequence,
            ballot_number_pid=pid,
        )

    def _insert_lock(self, record: str, session_id: int) -> None:
        try:
            self._storage.insert_lock(record)
        except Exception as exc:
            self._logger.warning("failed to store lock for session %d: %s", session_id, exc)

    def _reply(self, address: str, text: str, session_id: int) -> None:
        try:
            self._client.reply(address, text, session_id)
        except Exception as exc:
            self._logger.warning("failed to call reply on %s: %s", address, exc)

    def request(self, msg: RequestMsg) -> None:
        """Run an intra-shard transfer and reply with its outcome if this node leads."""
        if self._memory.blocked:
            return

        trx = msg.transaction
        session_id = int(trx.session_id)
        try:
            self._logger.debug("input request %s", trx)

            if not self._locks.lock(trx.sender, session_id) or not self._locks.lock(trx.receiver, session_id):
                self._logger.warning("failed to capture locks for session %d", session_id)
                return

            self._insert_lock(trx.sender, session_id)
            self._insert_lock(trx.receiver, session_id)

            try:
                balance = self._storage.client_balance(trx.sender)
            except Exception as exc:
                self._logger.warning("failed to get client balance: %s", exc)
                return

            wals = [self._log(session_id, WALMessage.START)]
            amount = int(trx.amount)

            if amount <= balance:
                try:
                    self._storage.update_client_balance(trx.sender, -amount, False)
                except Exception as exc:
                    self._logger.warning("failed to update sender balance: %s", exc)
                    return
                try:
                    self._storage.update_client_balance(trx.receiver, amount, False)
                except Exception as exc:
                    self._logger.warning("failed to update receiver balance: %s", exc)
                    return
                wals += [
                    self._log(session_id, WALMessage.UPDATE, trx.sender, -amount),
                    self._log(session_id, WALMessage.UPDATE, trx.receiver, amount),
                    self._log(session_id, WALMessage.COMMIT),
                ]
                response = Response.OK
                self._logger.debug("transaction committed; session id %d", session_id)
            else:
                wals.append(self._log(session_id, WALMessage.ABORT))
                response = Response.FAILED
                self._logger.debug("client balance is not enough; session id %d", session_id)

            try:
                self._storage.insert_wals(wals)
            except Exception as exc:
                self._logger.warning("failed to store logs: %s", exc)
                return

            if self._memory.is_leader:
                self._reply(msg.return_address, response.value, session_id)
        finally:
            self._locks.unlock(trx.sender, session_id)
            self._locks.unlock(trx.receiver, session_id)

    def prepare(self, msg: PrepareMsg) -> None:
        """Lock this shard's client, log the intended change and vote to the client."""
        if self._memory.blocked:
            return

        trx = msg.transaction
        session_id = int(trx.session_id)

        if not self._locks.lock(msg.client, session_id):
            self._logger.warning("failed to capture locks for session %d", session_id)
            self._locks.unlock(msg.client, session_id)
            return

        self._insert_lock(msg.client, session_id)

        wals = [Log(message=WALMessage.START.value, session_id=session_id)]
        abort = False
        amount = int(trx.amount)

        if trx.sender == msg.client:
            try:
                balance = self._storage.client_balance(msg.client)
            except Exception as exc:
                self._logger.warning("failed to get client balance: %s", exc)
                return
            wals.append(
                Log(message=WALMessage.UPDATE.value, session_id=session_id, record=trx.sender, new_value=-amount)
            )
            abort = amount > balance
        else:
            wals.append(
                Log(message=WALMessage.UPDATE.value, session_id=session_id, record=trx.receiver, new_value=amount)
            )

        try:
            self._storage.insert_wals(wals)
        except Exception as exc:
            self._logger.warning("failed to store logs: %s", exc)
            return

        if self._memory.is_leader:
            try:
                self._client.ack(msg.return_address, session_id, abort)
            except Exception as exc:
                self._logger.warning("failed to send ack message: %s", exc)

    def commit(self, msg: CommitMsg) -> None:
        """Apply a prepared session's logged changes and release its locks."""
        if self._memory.blocked:
            return

        session_id = int(msg.session_id)

        if self._memory.is_leader:
            for address in self._memory.cluster_ips:
                try:
                    self._client.database_commit(address, session_id)
                except Exception as exc:
                    self._logger.warning("failed to forward commit message: %s", exc)

        try:
            wals = self._storage.wals_by_session(session_id)
        except Exception as exc:
            self._logger.warning("failed to get logs: %s", exc)
            return

        for wal in wals:
            self._locks.unlock(wal.record, session_id)
            try:
                self._storage.update_client_balance(wal.record, wal.new_value, False)
            except Exception as exc:
                self._logger.warning("failed to update balance of %s: %s", wal.record, exc)
                return

        try:
            self._storage.insert_wal(self._log(session_id, WALMessage.COMMIT))
        except Exception as exc:
            self._logger.warning("failed to store log: %s", exc)
            return

        self._logger.debug("transaction committed; session id %d", session_id)

        if self._memory.is_leader:
            self._reply(msg.return_address, Response.OK.value, session_id)

    def abort(self, session_id: int) -> None:
        """Release a prepared session's locks and log its abort."""
        if self._memory.blocked:
            return

        if self._memory.is_leader:
            for address in self._memory.cluster_ips:
                try:
                    self._client.database_abort(address, session_id)
                except Exception as exc:
                    self._logger.warning("failed to forward abort message: %s", exc)

        try:
            wals = self._storage.wals_by_session(session_id)
        except Exception as exc:
            self._logger.warning("failed to get logs: %s", exc)
            return

        for wal in wals:
            self._locks.unlock(wal.record, session_id)

        try:
            self._storage.insert_wal(self._log(session_id, WALMessage.ABORT))
        except Exception as exc:
            self._logger.warning("failed to store log: %s", exc)