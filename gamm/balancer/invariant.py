"""Weighted constant-function invariant solver."""

from gamm.errors import MathDomainError
from gamm.math.fixed_point import Dec, pow_dec


def solve_constant_function_invariant(
    token_balance_fixed_before: Dec,
    token_balance_fixed_after: Dec,
    token_weight_fixed: Dec,
    token_balance_unknown_before: Dec,
    token_weight_unknown: Dec,
) -> Dec:
    """Solve the weighted invariant for the balance change on the unknown side.

    For a fixed side moving from ``balance_x_before`` to ``balance_x_after``,
    the unknown side must change by:

        delta_y = balance_y * (1 - (balance_x_before / balance_x_after)^(weight_x / weight_y))

    delta_y is positive when the unknown side's balance decreases (liquidity
    leaves the pool) and negative when it increases.

    Raises:
        MathDomainError: If token_balance_fixed_after <= 0 or token_weight_unknown <= 0
    """
    if not token_balance_fixed_after.is_positive():
        raise MathDomainError("balance of the fixed side after the change must be positive")
    if not token_weight_unknown.is_positive():
        raise MathDomainError("weight of the unknown side must be positive")

    weight_ratio = token_weight_fixed.quo(token_weight_unknown)
    y = token_balance_fixed_before.quo(token_balance_fixed_after)

    multiplier = Dec.one().sub(pow_dec(y, weight_ratio))
    return token_balance_unknown_before.mul(multiplier)
