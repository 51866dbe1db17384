"""Weighted pool swap math.

Exact-in and exact-out swap amounts, spot prices, and staging of swap
balance deltas. All functions are pure: they read a Pool and return amounts
or a new staged Pool.
"""

from __future__ import annotations

import structlog

from gamm.errors import InvalidMathApprox, SameDenomination, TooManyTokensOut
from gamm.math.fixed_point import Dec
from gamm.pool import Coin, Pool, PoolAsset

from .fees import add_fee, fee_complement, subtract_fee
from .invariant import solve_constant_function_invariant

logger = structlog.get_logger()


def calc_out_given_in(
    pool_asset_in: PoolAsset,
    pool_asset_out: PoolAsset,
    token_amount_in: Dec,
    swap_fee: Dec,
) -> Dec:
    """Calculate the output amount for an exact input (sell).

    The fee is deducted from the input before the invariant is solved, so
    the fee portion stays in the pool.

    Formula:
        amount_in_after_fee = amount_in * (1 - swap_fee)
        ratio = balance_in / (balance_in + amount_in_after_fee)
        amount_out = balance_out * (1 - ratio^(w_in / w_out))

    Returns:
        Output amount truncated to the output asset's precision

    Raises:
        InvalidMathApprox: If the truncated output is zero or negative
    """
    token_amount_in_after_fee = subtract_fee(token_amount_in, swap_fee)
    pool_post_swap_in_balance = pool_asset_in.balance.add(token_amount_in_after_fee)

    # delta of the out side is positive: pool reserves of the out asset decrease
    token_amount_out = solve_constant_function_invariant(
        pool_asset_in.balance,
        pool_post_swap_in_balance,
        pool_asset_in.weight,
        pool_asset_out.balance,
        pool_asset_out.weight,
    ).truncate(pool_asset_out.decimals)

    if not token_amount_out.is_positive():
        raise InvalidMathApprox(
            f"{pool_asset_out.denom} amount out is zero or negative: {token_amount_out}"
        )
    return token_amount_out


def calc_in_given_out(
    pool_asset_out: PoolAsset,
    pool_asset_in: PoolAsset,
    token_amount_out: Dec,
    swap_fee: Dec,
) -> Dec:
    """Calculate the input amount for an exact output (buy).

    The invariant is solved for the post-fee input, which is then grossed up
    by 1 / (1 - swap_fee) to the amount the trader pays.

    The result is truncated like the exact-in output, so selling it back may
    buy slightly less than ``token_amount_out``; the keeper bumps it with
    ``converge_in_amount`` before charging it.

    Returns:
        Input amount truncated to the input asset's precision

    Raises:
        TooManyTokensOut: If token_amount_out >= the pool's out balance
        InvalidMathApprox: If the resulting input is zero or negative
    """
    if token_amount_out >= pool_asset_out.balance:
        raise TooManyTokensOut(
            f"can't get {token_amount_out}{pool_asset_out.denom} out of a pool "
            f"holding {pool_asset_out.balance}"
        )

    pool_pre_swap_out_balance = pool_asset_out.balance.sub(token_amount_out)

    # delta of the in side is negative (its reserves grow), so flip the sign
    token_amount_in_before_fee = solve_constant_function_invariant(
        pool_asset_out.balance,
        pool_pre_swap_out_balance,
        pool_asset_out.weight,
        pool_asset_in.balance,
        pool_asset_in.weight,
    ).neg()

    token_amount_in = add_fee(token_amount_in_before_fee, swap_fee).truncate(
        pool_asset_in.decimals
    )

    if not token_amount_in.is_positive():
        raise InvalidMathApprox(
            f"{pool_asset_in.denom} amount in is zero or negative: {token_amount_in}"
        )
    return token_amount_in


# =============================================================================
# Pool-level wrappers
# =============================================================================


def _get_in_out_assets(
    pool: Pool, denom_in: str, denom_out: str
) -> tuple[PoolAsset, PoolAsset]:
    if denom_in == denom_out:
        raise SameDenomination(f"cannot trade same denomination in and out: {denom_in}")
    return pool.get_asset(denom_in), pool.get_asset(denom_out)


def calc_out_amt_given_in(
    pool: Pool,
    token_in: Coin,
    token_out_denom: str,
    swap_fee: Dec,
) -> Coin:
    """Calculate the coin received for selling ``token_in`` into ``pool``.

    Raises:
        SameDenomination: If token_in and token_out_denom match
        UnknownDenomination: If either denomination is not a pool asset
        InvalidMathApprox: If the output truncates to zero
    """
    asset_in, asset_out = _get_in_out_assets(pool, token_in.denom, token_out_denom)
    amount_out = calc_out_given_in(asset_in, asset_out, token_in.amount, swap_fee)
    return Coin(denom=token_out_denom, amount=amount_out)


def calc_in_amt_given_out(
    pool: Pool,
    token_out: Coin,
    token_in_denom: str,
    swap_fee: Dec,
) -> Coin:
    """Calculate the coin that must be paid to receive ``token_out`` from ``pool``.

    Raises:
        SameDenomination: If token_in_denom and token_out match
        UnknownDenomination: If either denomination is not a pool asset
        TooManyTokensOut: If token_out is not below the pool balance
        InvalidMathApprox: If the input rounds to zero
    """
    asset_in, asset_out = _get_in_out_assets(pool, token_in_denom, token_out.denom)
    amount_in = calc_in_given_out(asset_out, asset_in, token_out.amount, swap_fee)
    return Coin(denom=token_in_denom, amount=amount_in)


def apply_swap(pool: Pool, token_in: Coin, token_out: Coin) -> Pool:
    """Stage the balance deltas of a swap: in += token_in, out -= token_out."""
    asset_in, asset_out = _get_in_out_assets(pool, token_in.denom, token_out.denom)
    new_out_balance = asset_out.balance.sub(token_out.amount)
    if new_out_balance.is_negative():
        raise TooManyTokensOut(
            f"swap would leave {asset_out.denom} balance negative: {new_out_balance}"
        )
    return pool.with_balances(
        {
            asset_in.denom: asset_in.balance.add(token_in.amount),
            asset_out.denom: new_out_balance,
        }
    )


# =============================================================================
# Spot price
# =============================================================================


def spot_price(pool: Pool, quote_denom: str, base_denom: str) -> Dec:
    """Weight-adjusted balance ratio of two pool assets.

    spot_price = (base_balance / base_weight) / (quote_balance / quote_weight)

    Raises:
        UnknownDenomination: If either denomination is not a pool asset
        InvalidMathApprox: If the quote asset has a zero balance
    """
    quote = pool.get_asset(quote_denom)
    base = pool.get_asset(base_denom)

    numerator = base.balance.quo(base.weight)
    denominator = quote.balance.quo(quote.weight)
    if denominator.is_zero():
        logger.debug("spot_price_zero_quote_balance", pool_id=pool.id, denom=quote_denom)
        raise InvalidMathApprox(f"quote asset {quote_denom} has zero weighted balance")
    return numerator.quo(denominator)


def spot_price_with_swap_fee(pool: Pool, quote_denom: str, base_denom: str) -> Dec:
    """Spot price including the swap fee: spot_price * 1 / (1 - swap_fee).

    This is the marginal price an infinitesimal trade actually pays.
    """
    price = spot_price(pool, quote_denom, base_denom)
    return price.mul(Dec.one().quo(fee_complement(pool.swap_fee)))
