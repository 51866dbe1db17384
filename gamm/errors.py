"""Pool engine error classes.

Every failure the engine can report is a subclass of GammError, raised before
any pool state is staged.
"""


class GammError(Exception):
    """Base error for pool engine operations."""

    pass


class SameDenomination(GammError):
    """Input and output denominations are identical."""

    pass


class UnknownDenomination(GammError):
    """A requested denomination is not an asset of the pool."""

    pass


class PoolInactive(GammError):
    """Operation attempted outside the pool's active time window."""

    pass


class InvalidMathApprox(GammError):
    """A computed amount truncates to zero or negative."""

    pass


class TooManyTokensOut(GammError):
    """Requested exact-out amount is not strictly below the pool balance."""

    pass


class LimitExceeded(GammError):
    """Computed amount violates the caller's minimum-out or maximum-in bound."""

    pass


class ExcessiveShareRedemption(GammError):
    """Exit request is greater than or equal to the total outstanding shares."""

    pass


class UnsupportedJoinShape(GammError):
    """Supplied asset count is neither one nor the full pool asset count."""

    pass


class NotImplementedJoin(GammError, NotImplementedError):
    """Proportional all-asset join is reserved but not implemented."""

    pass


class MathDomainError(GammError):
    """Argument outside the domain of an invariant or power computation."""

    pass


class PowDidNotConverge(GammError):
    """Binomial series for a fractional power exceeded its iteration bound."""

    pass


class InvalidPoolError(GammError):
    """Pool parameters violate a structural invariant."""

    pass


class InvalidFeeError(GammError):
    """Fee must be in range [0, 1)."""

    pass


class PoolNotFound(GammError):
    """No pool is stored under the requested identifier."""

    pass


class InsufficientFunds(GammError):
    """Ledger account balance is too small for a transfer."""

    pass
