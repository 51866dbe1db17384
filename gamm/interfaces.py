"""Collaborator interfaces consumed by the pool keeper.

The keeper never reaches for ambient state: the pool store, the token ledger
and the post-commit observer are all passed in explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from gamm.pool import Coin, Pool


class EventKind(str, Enum):
    """Kind of committed pool operation."""

    SWAP = "swap"
    JOIN = "join"
    EXIT = "exit"


@dataclass(frozen=True)
class PoolEvent:
    """Summary of a committed operation, handed to the observer."""

    kind: EventKind
    pool_id: int
    sender: str
    tokens_in: tuple[Coin, ...]
    tokens_out: tuple[Coin, ...]


@runtime_checkable
class PoolRepository(Protocol):
    """Protocol for loading and persisting pool state."""

    def load(self, pool_id: int) -> Pool:
        """Load the current state of a pool.

        Raises:
            PoolNotFound: If no pool is stored under pool_id
        """
        ...

    def store(self, pool: Pool) -> None:
        """Persist a pool, replacing any previous state with the same id."""
        ...


@runtime_checkable
class Ledger(Protocol):
    """Protocol for the token ledger that physically moves funds."""

    def transfer(self, sender: str, recipient: str, coin: Coin) -> None:
        """Move ``coin`` from sender to recipient.

        Raises:
            InsufficientFunds: If sender cannot cover the amount
        """
        ...


@runtime_checkable
class PoolObserver(Protocol):
    """Protocol for a listener notified after each successful commit.

    The keeper logs anything raised by ``on_commit``; the committed operation
    still succeeds.
    """

    def on_commit(self, event: PoolEvent) -> None: ...
