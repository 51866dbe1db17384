"""Weighted (Balancer-style) pool math.

This package provides the pure calculators of the engine:
- the constant-function invariant solver
- exact-in / exact-out swap amounts and spot prices
- single-asset joins and proportional exits
"""

# Fee helpers
from .fees import add_fee, fee_complement, subtract_fee, validate_fee

# Invariant
from .invariant import solve_constant_function_invariant

# Liquidity
from .liquidity import (
    ExitResult,
    JoinResult,
    calc_pool_out_given_single_in,
    exit_pool,
    join_pool,
    single_asset_join,
)

# Swaps
from .swap import (
    apply_swap,
    calc_in_amt_given_out,
    calc_in_given_out,
    calc_out_amt_given_in,
    calc_out_given_in,
    spot_price,
    spot_price_with_swap_fee,
)

__all__ = [
    # Invariant
    "solve_constant_function_invariant",
    # Swap math
    "calc_out_given_in",
    "calc_in_given_out",
    "calc_out_amt_given_in",
    "calc_in_amt_given_out",
    "apply_swap",
    "spot_price",
    "spot_price_with_swap_fee",
    # Liquidity math
    "calc_pool_out_given_single_in",
    "single_asset_join",
    "join_pool",
    "exit_pool",
    "JoinResult",
    "ExitResult",
    # Fee helpers
    "validate_fee",
    "fee_complement",
    "subtract_fee",
    "add_fee",
]
