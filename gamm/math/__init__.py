"""Mathematical primitives for the weighted pool engine.

- Dec: signed 18-decimal fixed-point arithmetic with truncating mul/quo
- pow_dec: deterministic fractional exponentiation
"""

from gamm.math.fixed_point import POW_PRECISION, Dec, pow_approx, pow_dec

__all__ = ["Dec", "pow_dec", "pow_approx", "POW_PRECISION"]
