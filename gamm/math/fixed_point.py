"""Deterministic 18-decimal fixed-point math.

All values are signed integers scaled by 10^18. Multiplication and division
truncate toward zero, so replaying the same sequence of operations always
produces the same digits regardless of platform.

The only transcendental operation is ``pow_dec``, which the weighted invariant
needs for fractional weight ratios. It is evaluated with a fixed binomial
series and a fixed stopping tolerance (``POW_PRECISION``) rather than through
a platform math library.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Context, Decimal, InvalidOperation
from typing import ClassVar

import structlog

from gamm.errors import MathDomainError, PowDidNotConverge

__all__ = [
    "Dec",
    "pow_dec",
    "pow_approx",
    "reduce_base",
    "PRECISION",
    "ONE_18",
    "POW_PRECISION",
    "MAX_POW_ITERATIONS",
]

logger = structlog.get_logger()

# =============================================================================
# Constants
# =============================================================================

PRECISION = 18
ONE_18 = 10**PRECISION

# Series terms below this magnitude are dropped (10^-8).
POW_PRECISION_RAW = 10**10

# Upper bound on binomial series terms for a direct pow_approx call near 0 or 2.
MAX_POW_ITERATIONS = 100_000

# Wide enough for any amount we convert; never rounds inside the scale step.
_CONTEXT = Context(prec=120, rounding=ROUND_DOWN)


def _div_trunc(a: int, b: int) -> int:
    """Integer division truncating toward zero.

    Python's // floors toward negative infinity; for operands of different
    signs that differs from truncation, e.g. -7 // 3 == -3 but trunc(-7/3) == -2.
    """
    if b == 0:
        raise ZeroDivisionError("Division by zero in _div_trunc")
    if (a >= 0) == (b >= 0):
        return a // b
    return -(abs(a) // abs(b))


# =============================================================================
# Dec
# =============================================================================


class Dec:
    """Signed 18-decimal fixed-point number stored as int.

    Example: 1.5 is stored as 1_500_000_000_000_000_000.
    """

    ONE: ClassVar[int] = ONE_18

    __slots__ = ("value",)
    __hash__ = None  # type: ignore[assignment]  # Unhashable since we define __eq__

    def __init__(self, value: int) -> None:
        """Create Dec from raw scaled value."""
        if not isinstance(value, int) or isinstance(value, bool):
            raise TypeError(f"Dec requires a raw int, got {type(value).__name__}")
        self.value = value

    # --- Constructors ---

    @classmethod
    def zero(cls) -> Dec:
        return cls(0)

    @classmethod
    def one(cls) -> Dec:
        return cls(cls.ONE)

    @classmethod
    def from_int(cls, i: int) -> Dec:
        """Create from integer (will be scaled by 10^18)."""
        return cls(i * cls.ONE)

    @classmethod
    def from_decimal(cls, d: Decimal) -> Dec:
        """Create from Decimal, truncating digits beyond 18 decimals toward zero."""
        if not d.is_finite():
            raise ValueError(f"Dec.from_decimal requires a finite value, got {d}")
        scaled = d.scaleb(PRECISION, context=_CONTEXT).to_integral_value(rounding=ROUND_DOWN)
        return cls(int(scaled))

    @classmethod
    def from_str(cls, s: str) -> Dec:
        """Parse a decimal string such as "1000", "0.003" or "-2.5"."""
        try:
            d = Decimal(s.strip())
        except InvalidOperation as err:
            raise ValueError(f"Invalid decimal string: '{s}'") from err
        return cls.from_decimal(d)

    def to_decimal(self) -> Decimal:
        """Convert to an exact Decimal."""
        return Decimal(self.value).scaleb(-PRECISION, context=_CONTEXT)

    # --- Arithmetic ---

    def add(self, other: Dec) -> Dec:
        return Dec(self.value + other.value)

    def sub(self, other: Dec) -> Dec:
        """Subtract other from self. The result may be negative."""
        return Dec(self.value - other.value)

    def mul(self, other: Dec) -> Dec:
        """Multiply, truncating toward zero: trunc(a * b / 10^18)."""
        return Dec(_div_trunc(self.value * other.value, self.ONE))

    def quo(self, other: Dec) -> Dec:
        """Divide, truncating toward zero: trunc(a * 10^18 / b)."""
        if other.value == 0:
            raise ZeroDivisionError("Dec division by zero")
        return Dec(_div_trunc(self.value * self.ONE, other.value))

    def neg(self) -> Dec:
        return Dec(-self.value)

    def abs(self) -> Dec:
        return Dec(abs(self.value))

    def power(self, n: int) -> Dec:
        """Integer power by repeated squaring, truncating after every multiply."""
        if n < 0:
            raise MathDomainError(f"Integer exponent must be non-negative, got {n}")
        result = Dec.one()
        base = self
        while n > 0:
            if n & 1:
                result = result.mul(base)
            n >>= 1
            if n:
                base = base.mul(base)
        return result

    # --- Rounding to a coarser precision ---

    def _unit(self, decimals: int) -> int:
        if not 0 <= decimals <= PRECISION:
            raise ValueError(f"decimals must be in [0, {PRECISION}], got {decimals}")
        return 10 ** (PRECISION - decimals)

    def truncate(self, decimals: int = 0) -> Dec:
        """Drop digits beyond ``decimals`` places, toward zero."""
        unit = self._unit(decimals)
        return Dec(_div_trunc(self.value, unit) * unit)

    def ceil(self, decimals: int = 0) -> Dec:
        """Round up (toward +infinity) to ``decimals`` places."""
        unit = self._unit(decimals)
        return Dec(-((-self.value) // unit) * unit)

    # --- Predicates ---

    def is_zero(self) -> bool:
        return self.value == 0

    def is_positive(self) -> bool:
        return self.value > 0

    def is_negative(self) -> bool:
        return self.value < 0

    # --- Comparisons ---

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Dec):
            return NotImplemented
        return self.value == other.value

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Dec):
            return NotImplemented
        return self.value < other.value

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Dec):
            return NotImplemented
        return self.value <= other.value

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Dec):
            return NotImplemented
        return self.value > other.value

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Dec):
            return NotImplemented
        return self.value >= other.value

    def __repr__(self) -> str:
        return f"Dec('{self}')"

    def __str__(self) -> str:
        return format(self.to_decimal(), "f")


POW_PRECISION = Dec(POW_PRECISION_RAW)
_HALF = Dec(ONE_18 // 2)


# =============================================================================
# Power
# =============================================================================


def pow_dec(base: Dec, exp: Dec) -> Dec:
    """Compute base^exp for base > 0 and exp >= 0.

    The exponent is split into an integer part, handled exactly by
    ``Dec.power``, and a fractional part f.

    The binomial series behind ``pow_approx`` slows down as its base moves
    away from 1, so the base is first reduced by powers of two:

        base   = r * 2^j        with 2/3 <= r < 4/3
        base^f = r^f * (2^f)^j  where 2^f = 1 / 0.5^f

    Both series arguments (r and 0.5) then lie within 1/2 of 1 and need a
    few dozen terms at most, for any positive base.

    Raises:
        MathDomainError: If base <= 0 or exp < 0
    """
    if not base.is_positive():
        raise MathDomainError(f"pow base must be positive, got {base}")
    if exp.is_negative():
        raise MathDomainError(f"pow exponent must be non-negative, got {exp}")

    integer = exp.value // ONE_18
    fractional = Dec(exp.value - integer * ONE_18)

    integer_pow = base.power(integer)
    if fractional.is_zero():
        return integer_pow

    return integer_pow.mul(_pow_fractional(base, fractional))


def reduce_base(base: Dec) -> tuple[Dec, int]:
    """Split a positive base into (r, j) with base = r * 2^j and 2/3 <= r < 4/3.

    Doubling is exact. Halving floors the raw value, so r is
    floor(base / 2^j) for j > 0.
    """
    value = base.value
    shift = 0
    while 3 * value >= 4 * ONE_18:
        value //= 2
        shift += 1
    while 3 * value < 2 * ONE_18:
        value *= 2
        shift -= 1
    return Dec(value), shift


def _pow_fractional(base: Dec, exp: Dec) -> Dec:
    reduced, shift = reduce_base(base)
    result = pow_approx(reduced, exp, POW_PRECISION)
    if shift == 0:
        return result

    half_pow = pow_approx(_HALF, exp, POW_PRECISION)
    if shift < 0:
        return result.mul(half_pow.power(-shift))
    return result.mul(Dec.one().quo(half_pow).power(shift))


def pow_approx(base: Dec, exp: Dec, precision: Dec) -> Dec:
    """Approximate base^exp for 0 < base < 2 and 0 <= exp < 1.

    Sums the Maclaurin series of (1 + x)^a with x = base - 1:

        (1 + x)^a = sum_k binom(a, k) * x^k
        term_k    = term_{k-1} * |a - (k - 1)| * |x| / k

    The sign of each term is tracked separately so every term is computed
    from magnitudes with truncating arithmetic. Summation stops at the first
    term whose magnitude is below ``precision``. For x > 0 the terms after
    the first alternate in sign, so the error is below that last term. For
    x < 0 they share a sign and the tail is at most term * |x| / (1 - |x|),
    which ``pow_dec`` keeps within one ``precision`` by holding |x| <= 1/2.
    Truncation adds at most one raw unit per term.

    Raises:
        PowDidNotConverge: If more than MAX_POW_ITERATIONS terms are needed,
            which only happens for bases close to 0 or 2
    """
    if exp.is_zero():
        return Dec.one()

    x_signed = base.sub(Dec.one())
    x = x_signed.abs()
    x_negative = x_signed.is_negative()

    term = Dec.one()
    total = Dec.one()
    negative = False

    k = 1
    while term >= precision:
        if k > MAX_POW_ITERATIONS:
            logger.warning(
                "pow_approx_did_not_converge",
                base=str(base),
                exp=str(exp),
                iterations=MAX_POW_ITERATIONS,
            )
            raise PowDidNotConverge(
                f"pow_approx({base}, {exp}) exceeded {MAX_POW_ITERATIONS} terms"
            )

        c_signed = exp.sub(Dec.from_int(k - 1))
        c = c_signed.abs()
        term = term.mul(c).mul(x).quo(Dec.from_int(k))
        if term.is_zero():
            break

        if x_negative:
            negative = not negative
        if c_signed.is_negative():
            negative = not negative

        total = total.sub(term) if negative else total.add(term)
        k += 1

    return total
