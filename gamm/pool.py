"""Weighted pool dataclasses.

Pools are immutable values. Operations never mutate a Pool in place; they
stage a new Pool that the keeper commits as a single unit.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime

from gamm.errors import InvalidFeeError, InvalidPoolError, UnknownDenomination
from gamm.math.fixed_point import PRECISION, Dec

_COIN_RE = re.compile(r"^\s*(-?[0-9]+(?:\.[0-9]+)?)\s*([a-zA-Z][a-zA-Z0-9/:._-]{0,127})\s*$")


@dataclass(frozen=True)
class Coin:
    """An amount of a single denomination."""

    denom: str
    amount: Dec

    def __str__(self) -> str:
        return f"{self.amount}{self.denom}"


def parse_coin(text: str) -> Coin:
    """Parse a coin string of the form "<amount><denom>", e.g. "100.5uatom".

    Raises:
        ValueError: If the string does not match the coin format
    """
    match = _COIN_RE.match(text)
    if match is None:
        raise ValueError(f"Invalid coin string: '{text}'")
    amount, denom = match.groups()
    return Coin(denom=denom, amount=Dec.from_str(amount))


@dataclass(frozen=True)
class PoolAsset:
    """A single asset held by a weighted pool.

    Attributes:
        denom: Denomination identifier, unique within the pool
        balance: Pool reserve of this asset (non-negative)
        weight: Unnormalized weight (positive)
        decimals: Precision of the denomination; amounts of this asset
            are truncated to this many decimal places
    """

    denom: str
    balance: Dec
    weight: Dec
    decimals: int = PRECISION

    def __post_init__(self) -> None:
        if not self.denom:
            raise InvalidPoolError("Asset denom must be non-empty")
        if self.balance.is_negative():
            raise InvalidPoolError(f"Asset {self.denom} balance must be non-negative")
        if not self.weight.is_positive():
            raise InvalidPoolError(f"Asset {self.denom} weight must be positive")
        if not 0 <= self.decimals <= PRECISION:
            raise InvalidPoolError(f"Asset {self.denom} decimals must be in [0, {PRECISION}]")


@dataclass(frozen=True)
class ActiveWindow:
    """Half-open time interval [start, end) during which a pool accepts trades.

    Either bound may be None, meaning unbounded on that side.
    """

    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        if self.start is not None and self.end is not None and self.end <= self.start:
            raise InvalidPoolError("Active window end must be after its start")

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        return self.end is None or moment < self.end


def _validate_fee(name: str, fee: Dec) -> None:
    if fee.is_negative() or fee >= Dec.one():
        raise InvalidFeeError(f"{name} must be in range [0, 1), got {fee}")


@dataclass(frozen=True)
class Pool:
    """Weighted constant-function pool.

    Attributes:
        id: Unique pool identifier
        assets: Pool assets in a fixed order
        total_shares: Outstanding LP shares (positive)
        swap_fee: Proportional swap fee in [0, 1)
        exit_fee: Proportional exit fee in [0, 1)
        active_window: Optional window outside of which swaps and joins fail
        share_decimals: Precision of the LP share denomination
    """

    id: int
    assets: tuple[PoolAsset, ...]
    total_shares: Dec
    swap_fee: Dec = field(default_factory=Dec.zero)
    exit_fee: Dec = field(default_factory=Dec.zero)
    active_window: ActiveWindow | None = None
    share_decimals: int = PRECISION

    def __post_init__(self) -> None:
        if len(self.assets) < 2:
            raise InvalidPoolError(f"Pool {self.id} needs at least two assets")
        denoms = [asset.denom for asset in self.assets]
        if len(set(denoms)) != len(denoms):
            raise InvalidPoolError(f"Pool {self.id} has duplicate denoms: {denoms}")
        if not self.total_shares.is_positive():
            raise InvalidPoolError(f"Pool {self.id} total shares must be positive")
        if not 0 <= self.share_decimals <= PRECISION:
            raise InvalidPoolError(f"Pool {self.id} share decimals must be in [0, {PRECISION}]")
        _validate_fee("swap_fee", self.swap_fee)
        _validate_fee("exit_fee", self.exit_fee)

    @property
    def address(self) -> str:
        """Ledger account holding the pool's reserves."""
        return f"pool/{self.id}"

    @property
    def share_denom(self) -> str:
        """Denomination of the pool's LP shares."""
        return f"gamm/pool/{self.id}"

    @property
    def denoms(self) -> tuple[str, ...]:
        return tuple(asset.denom for asset in self.assets)

    @property
    def total_weight(self) -> Dec:
        total = Dec.zero()
        for asset in self.assets:
            total = total.add(asset.weight)
        return total

    def get_asset(self, denom: str) -> PoolAsset:
        """Get the asset for a denomination.

        Raises:
            UnknownDenomination: If the pool does not hold this denomination
        """
        for asset in self.assets:
            if asset.denom == denom:
                return asset
        raise UnknownDenomination(f"Pool {self.id} has no asset {denom}")

    def has_asset(self, denom: str) -> bool:
        return any(asset.denom == denom for asset in self.assets)

    def normalized_weight(self, denom: str) -> Dec:
        return self.get_asset(denom).weight.quo(self.total_weight)

    def is_active(self, moment: datetime) -> bool:
        return self.active_window is None or self.active_window.contains(moment)

    def with_balances(self, balances: Mapping[str, Dec]) -> Pool:
        """Return a copy with the given asset balances replaced.

        Raises:
            UnknownDenomination: If a denomination is not a pool asset
            InvalidPoolError: If a resulting balance is negative
        """
        for denom in balances:
            self.get_asset(denom)
        assets = tuple(
            replace(asset, balance=balances[asset.denom]) if asset.denom in balances else asset
            for asset in self.assets
        )
        return replace(self, assets=assets)

    def with_total_shares(self, total_shares: Dec) -> Pool:
        return replace(self, total_shares=total_shares)
