"""Reference host implementations of the keeper's collaborators.

- InMemoryPoolRepository / InMemoryLedger: process-local state with
  snapshot/restore, for tests and embedding
- memory_transaction: atomic context over any snapshot-capable participants
- JsonPoolRepository: one JSON document per pool on disk
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from gamm.errors import InsufficientFunds, InvalidPoolError, PoolNotFound
from gamm.math.fixed_point import Dec
from gamm.models import PoolDocument
from gamm.pool import Coin, Pool

logger = structlog.get_logger()


class Snapshottable(Protocol):
    """Participant of a memory_transaction."""

    def snapshot(self) -> Any: ...

    def restore(self, snapshot: Any) -> None: ...


@contextlib.contextmanager
def memory_transaction(*participants: Snapshottable) -> Iterator[None]:
    """Run a block atomically over in-memory participants.

    Every participant is snapshotted on entry; if the block raises, all of
    them are restored before the exception propagates.

    Usage:
        keeper = PoolKeeper(repo, ledger, transaction=lambda: memory_transaction(repo, ledger))
    """
    snapshots = [participant.snapshot() for participant in participants]
    try:
        yield
    except BaseException:
        for participant, snapshot in zip(participants, snapshots, strict=True):
            participant.restore(snapshot)
        logger.debug("memory_transaction_rolled_back", participants=len(participants))
        raise


class InMemoryPoolRepository:
    """Pool repository backed by a dict."""

    def __init__(self, pools: list[Pool] | None = None) -> None:
        self._pools: dict[int, Pool] = {}
        for pool in pools or []:
            self.store(pool)

    def load(self, pool_id: int) -> Pool:
        try:
            return self._pools[pool_id]
        except KeyError:
            raise PoolNotFound(f"pool {pool_id} not found") from None

    def store(self, pool: Pool) -> None:
        self._pools[pool.id] = pool

    def __contains__(self, pool_id: object) -> bool:
        return pool_id in self._pools

    # Pools are immutable, so a shallow copy is a full snapshot.
    def snapshot(self) -> dict[int, Pool]:
        return dict(self._pools)

    def restore(self, snapshot: dict[int, Pool]) -> None:
        self._pools = dict(snapshot)


class InMemoryLedger:
    """Account balances keyed by (account, denom).

    Issuer accounts may send their registered denomination without holding
    it, which models minting; their balance goes negative by the amount in
    circulation. Sending it back to the issuer burns it.
    """

    def __init__(self) -> None:
        self._balances: dict[tuple[str, str], int] = {}
        self._issuers: set[tuple[str, str]] = set()
        self.transfers: list[tuple[str, str, Coin]] = []

    def register_issuer(self, account: str, denom: str) -> None:
        self._issuers.add((account, denom))

    def mint(self, account: str, coin: Coin) -> None:
        """Credit ``coin`` to account out of thin air (test and genesis setup)."""
        key = (account, coin.denom)
        self._balances[key] = self._balances.get(key, 0) + coin.amount.value

    def balance(self, account: str, denom: str) -> Dec:
        return Dec(self._balances.get((account, denom), 0))

    def transfer(self, sender: str, recipient: str, coin: Coin) -> None:
        if coin.amount.is_negative():
            raise ValueError(f"cannot transfer a negative amount: {coin}")
        sender_key = (sender, coin.denom)
        available = self._balances.get(sender_key, 0)
        if sender_key not in self._issuers and available < coin.amount.value:
            raise InsufficientFunds(
                f"{sender} has {Dec(available)}{coin.denom}, needs {coin}"
            )
        recipient_key = (recipient, coin.denom)
        self._balances[sender_key] = available - coin.amount.value
        self._balances[recipient_key] = self._balances.get(recipient_key, 0) + coin.amount.value
        self.transfers.append((sender, recipient, coin))

    def snapshot(self) -> tuple[dict[tuple[str, str], int], int]:
        return dict(self._balances), len(self.transfers)

    def restore(self, snapshot: tuple[dict[tuple[str, str], int], int]) -> None:
        balances, transfer_count = snapshot
        self._balances = dict(balances)
        del self.transfers[transfer_count:]


class JsonPoolRepository:
    """Pool repository storing each pool as ``<directory>/<id>.json``.

    Writes go to a temporary file that atomically replaces the previous
    document, so readers never see a partially written pool.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    def _path(self, pool_id: int) -> Path:
        return self._directory / f"{pool_id}.json"

    def load(self, pool_id: int) -> Pool:
        path = self._path(pool_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise PoolNotFound(f"pool {pool_id} not found in {self._directory}") from None
        try:
            document = PoolDocument.model_validate_json(raw)
        except ValidationError as err:
            logger.warning("pool_document_invalid", pool_id=pool_id, path=str(path))
            raise InvalidPoolError(f"invalid pool document {path}: {err}") from err
        if document.id != pool_id:
            raise InvalidPoolError(f"{path} holds pool {document.id}, expected {pool_id}")
        return document.to_pool()

    def store(self, pool: Pool) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        payload = PoolDocument.from_pool(pool).model_dump_json(by_alias=True, indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{pool.id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self._path(pool.id))
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise
        logger.debug("pool_document_stored", pool_id=pool.id, path=str(self._path(pool.id)))

    def pool_ids(self) -> list[int]:
        """List the ids of all stored pools, sorted."""
        if not self._directory.exists():
            return []
        ids = []
        for path in self._directory.glob("*.json"):
            with contextlib.suppress(ValueError):
                ids.append(int(path.stem))
        return sorted(ids)
