"""Pydantic models for persisted pool documents.

A pool is stored as JSON with decimal amounts encoded as strings, so no
value ever passes through a float:

    {
      "id": 1,
      "assets": [{"denom": "uatom", "balance": "1000", "weight": "1"}, ...],
      "totalShares": "100",
      "swapFee": "0.003",
      "exitFee": "0",
      "activeWindow": {"start": "2024-01-01T00:00:00Z", "end": null}
    }
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field

from gamm.math.fixed_point import PRECISION, Dec
from gamm.pool import ActiveWindow, Pool, PoolAsset


def validate_decimal_string(value: Any) -> str:
    """Validate that a value is a finite decimal string.

    Args:
        value: Value to validate (string or int)

    Returns:
        Valid decimal string

    Raises:
        ValueError: If value is not a finite decimal
    """
    if isinstance(value, bool):
        raise ValueError("Decimal must be string or int, got bool")
    if isinstance(value, int):
        return str(value)
    if not isinstance(value, str):
        raise ValueError(f"Decimal must be string or int, got {type(value).__name__}")
    try:
        parsed = Decimal(value)
    except InvalidOperation as err:
        raise ValueError(f"Decimal must be a decimal string: '{value}'") from err
    if not parsed.is_finite():
        raise ValueError(f"Decimal must be finite: '{value}'")
    return value


# Decimal amount as string (validated, never a float)
DecimalString = Annotated[
    str,
    BeforeValidator(validate_decimal_string),
    Field(description="Fixed-point decimal as string"),
]


class PoolAssetDocument(BaseModel):
    """Serialized pool asset."""

    model_config = {"populate_by_name": True}

    denom: str = Field(min_length=1)
    balance: DecimalString
    weight: DecimalString
    decimals: int = Field(default=PRECISION, ge=0, le=PRECISION)

    def to_asset(self) -> PoolAsset:
        return PoolAsset(
            denom=self.denom,
            balance=Dec.from_str(self.balance),
            weight=Dec.from_str(self.weight),
            decimals=self.decimals,
        )

    @classmethod
    def from_asset(cls, asset: PoolAsset) -> PoolAssetDocument:
        return cls(
            denom=asset.denom,
            balance=str(asset.balance),
            weight=str(asset.weight),
            decimals=asset.decimals,
        )


class ActiveWindowDocument(BaseModel):
    """Serialized [start, end) active window."""

    start: datetime | None = None
    end: datetime | None = None


class PoolDocument(BaseModel):
    """Serialized weighted pool."""

    model_config = {"populate_by_name": True}

    id: int = Field(ge=0)
    assets: list[PoolAssetDocument] = Field(min_length=2)
    total_shares: DecimalString = Field(alias="totalShares")
    swap_fee: DecimalString = Field(default="0", alias="swapFee")
    exit_fee: DecimalString = Field(default="0", alias="exitFee")
    share_decimals: int = Field(default=PRECISION, ge=0, le=PRECISION, alias="shareDecimals")
    active_window: ActiveWindowDocument | None = Field(default=None, alias="activeWindow")

    def to_pool(self) -> Pool:
        """Build the engine Pool.

        Raises:
            InvalidPoolError: If the document violates a pool invariant
            InvalidFeeError: If a fee is outside [0, 1)
        """
        window = None
        if self.active_window is not None:
            window = ActiveWindow(start=self.active_window.start, end=self.active_window.end)
        return Pool(
            id=self.id,
            assets=tuple(asset.to_asset() for asset in self.assets),
            total_shares=Dec.from_str(self.total_shares),
            swap_fee=Dec.from_str(self.swap_fee),
            exit_fee=Dec.from_str(self.exit_fee),
            active_window=window,
            share_decimals=self.share_decimals,
        )

    @classmethod
    def from_pool(cls, pool: Pool) -> PoolDocument:
        window = None
        if pool.active_window is not None:
            window = ActiveWindowDocument(
                start=pool.active_window.start, end=pool.active_window.end
            )
        return cls(
            id=pool.id,
            assets=[PoolAssetDocument.from_asset(asset) for asset in pool.assets],
            total_shares=str(pool.total_shares),
            swap_fee=str(pool.swap_fee),
            exit_fee=str(pool.exit_fee),
            share_decimals=pool.share_decimals,
            active_window=window,
        )
