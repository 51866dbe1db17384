"""Fee helpers.

Functions for validating proportional fees and applying them to amounts.
"""

from gamm.errors import InvalidFeeError
from gamm.math.fixed_point import Dec


def validate_fee(fee: Dec) -> None:
    """Check that a proportional fee is in range [0, 1).

    Raises:
        InvalidFeeError: If fee is negative or >= 1
    """
    if fee.is_negative() or fee >= Dec.one():
        raise InvalidFeeError(f"Fee must be in range [0, 1), got {fee}")


def fee_complement(fee: Dec) -> Dec:
    """Return 1 - fee after validating the fee."""
    validate_fee(fee)
    return Dec.one().sub(fee)


def subtract_fee(amount: Dec, fee: Dec) -> Dec:
    """Deduct a fee from an input amount: amount * (1 - fee).

    Used on the exact-in path, where the fee is taken before the invariant
    is solved.
    """
    return amount.mul(fee_complement(fee))


def add_fee(amount: Dec, fee: Dec) -> Dec:
    """Gross an invariant input up to the amount the trader pays: amount / (1 - fee).

    Used on the exact-out path, where the invariant is solved for the
    post-fee input and the fee is added back afterwards.
    """
    return amount.quo(fee_complement(fee))
