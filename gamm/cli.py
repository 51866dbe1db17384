"""Command-line quoting tool over a directory of pool documents.

Usage:
    # Show a pool
    gamm --pool-dir ./pools show 1

    # Quote selling 100uatom for uosmo
    gamm --pool-dir ./pools quote-in 1 100uatom uosmo

    # Quote the uatom needed to buy 50uosmo
    gamm --pool-dir ./pools quote-out 1 50uosmo uatom

    # Spot price of uatom in uosmo, with the swap fee applied
    gamm --pool-dir ./pools spot-price 1 uatom uosmo --with-fee

The pool directory defaults to GAMM_POOL_DIR.
"""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

import structlog

from gamm.balancer.swap import (
    calc_in_amt_given_out,
    calc_out_amt_given_in,
    spot_price,
    spot_price_with_swap_fee,
)
from gamm.config import EngineConfig
from gamm.errors import GammError
from gamm.log import configure_logging
from gamm.pool import Pool, parse_coin
from gamm.store import JsonPoolRepository

logger = structlog.get_logger()


def _format_pool(pool: Pool) -> str:
    lines = [
        f"pool {pool.id}",
        f"  address:      {pool.address}",
        f"  share denom:  {pool.share_denom}",
        f"  total shares: {pool.total_shares}",
        f"  swap fee:     {pool.swap_fee}",
        f"  exit fee:     {pool.exit_fee}",
    ]
    if pool.active_window is not None:
        start = pool.active_window.start.isoformat() if pool.active_window.start else "-"
        end = pool.active_window.end.isoformat() if pool.active_window.end else "-"
        lines.append(f"  active:       [{start}, {end})")
    lines.append("  assets:")
    for asset in pool.assets:
        lines.append(
            f"    {asset.denom}: balance={asset.balance} weight={asset.weight} "
            f"normalized={pool.normalized_weight(asset.denom)}"
        )
    return "\n".join(lines)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gamm",
        description="Quote swaps and prices against weighted pools stored as JSON documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--pool-dir",
        type=Path,
        default=None,
        help="Directory of <id>.json pool documents (default: $GAMM_POOL_DIR)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    show = subparsers.add_parser("show", help="Print a pool")
    show.add_argument("pool_id", type=int)

    quote_in = subparsers.add_parser("quote-in", help="Quote the output for an exact input")
    quote_in.add_argument("pool_id", type=int)
    quote_in.add_argument("coin", type=parse_coin, help="Coin sold, e.g. 100uatom")
    quote_in.add_argument("denom_out")

    quote_out = subparsers.add_parser("quote-out", help="Quote the input for an exact output")
    quote_out.add_argument("pool_id", type=int)
    quote_out.add_argument("coin", type=parse_coin, help="Coin bought, e.g. 50uosmo")
    quote_out.add_argument("denom_in")

    price = subparsers.add_parser("spot-price", help="Print the spot price of QUOTE in BASE")
    price.add_argument("pool_id", type=int)
    price.add_argument("quote")
    price.add_argument("base")
    price.add_argument(
        "--with-fee",
        action="store_true",
        help="Include the pool swap fee",
    )

    return parser


def _run(args: argparse.Namespace, repository: JsonPoolRepository) -> str:
    pool = repository.load(args.pool_id)
    if args.command == "show":
        return _format_pool(pool)
    if args.command == "quote-in":
        return str(calc_out_amt_given_in(pool, args.coin, args.denom_out, pool.swap_fee))
    if args.command == "quote-out":
        return str(calc_in_amt_given_out(pool, args.coin, args.denom_in, pool.swap_fee))
    if args.with_fee:
        return str(spot_price_with_swap_fee(pool, args.quote, args.base))
    return str(spot_price(pool, args.quote, args.base))


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``gamm`` command.

    Returns:
        0 on success, 1 if the engine rejected the request
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    configure_logging("DEBUG" if args.verbose else config.log_level)

    pool_dir = args.pool_dir or config.pool_dir
    if pool_dir is None:
        parser.error("no pool directory: pass --pool-dir or set GAMM_POOL_DIR")

    repository = JsonPoolRepository(pool_dir)
    try:
        output = _run(args, repository)
    except GammError as e:
        logger.debug("cli_request_failed", command=args.command, error_type=type(e).__name__)
        print(f"error: {e}", file=sys.stderr)
        return 1

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
