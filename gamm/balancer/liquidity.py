"""Weighted pool liquidity math.

Share issuance for deposits (joins) and pro-rata redemption for withdrawals
(exits). Like the swap math, every function returns a staged Pool instead of
mutating its argument.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from gamm.errors import (
    ExcessiveShareRedemption,
    InvalidMathApprox,
    NotImplementedJoin,
    UnsupportedJoinShape,
)
from gamm.math.fixed_point import Dec
from gamm.pool import Coin, Pool

from .fees import fee_complement, validate_fee
from .invariant import solve_constant_function_invariant

logger = structlog.get_logger()


@dataclass(frozen=True)
class JoinResult:
    """Shares minted by a join and the pool state that results from it."""

    shares_out: Dec
    pool: Pool


@dataclass(frozen=True)
class ExitResult:
    """Coins withdrawn by an exit and the pool state that results from it."""

    tokens_out: tuple[Coin, ...]
    pool: Pool


def calc_pool_out_given_single_in(
    token_balance_in: Dec,
    normalized_token_weight_in: Dec,
    pool_shares: Dec,
    token_amount_in: Dec,
    swap_fee: Dec,
) -> Dec:
    """Calculate the shares issued for a deposit of a single asset.

    Only the part of the deposit that is conceptually swapped into the other
    assets pays the swap fee: effective_fee = swap_fee * (1 - normalized_weight).

    Because the weights are normalized, the share supply is linear in the
    invariant value k. Growing one balance from x to x' scales k by
    (x'/x)^weight, so the new shares are shares * ((x'/x)^weight - 1). That is
    the invariant solver with the unknown side's weight fixed at 1 and the
    sign reversed.
    """
    effective_swap_fee = Dec.one().sub(normalized_token_weight_in).mul(swap_fee)
    token_amount_in_after_fee = token_amount_in.mul(fee_complement(effective_swap_fee))

    return solve_constant_function_invariant(
        token_balance_in.add(token_amount_in_after_fee),
        token_balance_in,
        normalized_token_weight_in,
        pool_shares,
        Dec.one(),
    ).neg()


def single_asset_join(pool: Pool, token_in: Coin, swap_fee: Dec) -> JoinResult:
    """Join a pool with a single asset.

    The full deposit is added to the pool balance; the fee portion is what
    makes the invariant grow faster than the share supply.

    Raises:
        UnknownDenomination: If token_in is not a pool asset
        InvalidMathApprox: If the shares issued truncate to zero
    """
    validate_fee(swap_fee)
    asset_in = pool.get_asset(token_in.denom)
    if not token_in.amount.is_positive():
        raise InvalidMathApprox(f"join amount must be positive, got {token_in}")

    normalized_weight = asset_in.weight.quo(pool.total_weight)
    shares_out = calc_pool_out_given_single_in(
        asset_in.balance,
        normalized_weight,
        pool.total_shares,
        token_in.amount,
        swap_fee,
    ).truncate(pool.share_decimals)

    if not shares_out.is_positive():
        raise InvalidMathApprox(f"shares out is zero or negative: {shares_out}")

    staged = pool.with_balances(
        {asset_in.denom: asset_in.balance.add(token_in.amount)}
    ).with_total_shares(pool.total_shares.add(shares_out))
    return JoinResult(shares_out=shares_out, pool=staged)


def join_pool(pool: Pool, tokens_in: Sequence[Coin], swap_fee: Dec) -> JoinResult:
    """Dispatch a join on the number of assets supplied.

    A single coin is a single-asset join. Supplying every pool asset selects
    the proportional join, which is reserved and fails explicitly rather than
    guessing its formula. Any other shape is rejected.

    Raises:
        UnknownDenomination: If a coin is not a pool asset
        UnsupportedJoinShape: If the coins are neither one asset nor each pool asset once
        NotImplementedJoin: For the proportional all-asset join
    """
    for coin in tokens_in:
        pool.get_asset(coin.denom)

    if len(tokens_in) == 1:
        return single_asset_join(pool, tokens_in[0], swap_fee)
    supplied = {coin.denom for coin in tokens_in}
    if len(tokens_in) != len(pool.assets) or len(supplied) != len(tokens_in):
        raise UnsupportedJoinShape(
            f"pool {pool.id} only supports joining with one asset, or each of its "
            f"{len(pool.assets)} assets once; got {', '.join(c.denom for c in tokens_in)}"
        )
    logger.debug("proportional_join_requested", pool_id=pool.id)
    raise NotImplementedJoin(f"proportional join with all assets of pool {pool.id}")


def exit_pool(pool: Pool, exiting_shares: Dec, exit_fee: Dec) -> ExitResult:
    """Redeem shares for a pro-rata slice of every pool asset.

    The exit fee reduces the shares that are paid out, while the full
    ``exiting_shares`` are burned, so the forfeited part accrues to the
    remaining share holders.

    Raises:
        ExcessiveShareRedemption: If exiting_shares >= total shares
        InvalidMathApprox: If exiting_shares is not positive or nothing would be withdrawn
    """
    validate_fee(exit_fee)
    total_shares = pool.total_shares
    if exiting_shares >= total_shares:
        raise ExcessiveShareRedemption(
            f"too many shares out: {exiting_shares} >= total shares {total_shares}"
        )
    if not exiting_shares.is_positive():
        raise InvalidMathApprox(f"exiting shares must be positive, got {exiting_shares}")

    refunded_shares = exiting_shares
    if not exit_fee.is_zero():
        refunded_shares = exiting_shares.mul(fee_complement(exit_fee)).truncate(
            pool.share_decimals
        )

    share_out_ratio = refunded_shares.quo(total_shares)

    tokens_out: list[Coin] = []
    new_balances: dict[str, Dec] = {}
    for asset in pool.assets:
        exit_amount = share_out_ratio.mul(asset.balance).truncate(asset.decimals)
        if not exit_amount.is_positive():
            continue
        tokens_out.append(Coin(denom=asset.denom, amount=exit_amount))
        new_balances[asset.denom] = asset.balance.sub(exit_amount)

    if not tokens_out:
        raise InvalidMathApprox(f"exiting {exiting_shares} shares withdraws nothing")

    staged = pool.with_balances(new_balances).with_total_shares(
        total_shares.sub(exiting_shares)
    )
    return ExitResult(tokens_out=tuple(tokens_out), pool=staged)
