"""Weighted constant-function AMM pool engine."""

from gamm.keeper import PoolKeeper
from gamm.math.fixed_point import Dec
from gamm.pool import ActiveWindow, Coin, Pool, PoolAsset, parse_coin

__version__ = "0.1.0"
__all__ = [
    "PoolKeeper",
    "Dec",
    "Pool",
    "PoolAsset",
    "ActiveWindow",
    "Coin",
    "parse_coin",
    "__version__",
]
