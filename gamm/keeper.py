"""Pool keeper: transactional orchestration of swaps, joins and exits.

Every operation moves through Validated -> Computed -> Staged -> Committed.
A failure at any step rejects the operation before anything is committed.
The commit itself (ledger transfers followed by storing the staged pool)
runs inside the host's transaction context so that a failed transfer leaves
neither the ledger nor the stored pool changed.
"""

from __future__ import annotations

import contextlib
from collections.abc import Callable, Iterator, Sequence
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from gamm.balancer.liquidity import exit_pool, join_pool
from gamm.balancer.swap import (
    apply_swap,
    calc_in_given_out,
    calc_out_given_in,
    spot_price,
    spot_price_with_swap_fee,
)
from gamm.config import DEFAULT_CONFIG, EngineConfig
from gamm.errors import (
    GammError,
    InvalidMathApprox,
    LimitExceeded,
    PoolInactive,
    SameDenomination,
    TooManyTokensOut,
)
from gamm.interfaces import EventKind, Ledger, PoolEvent, PoolObserver, PoolRepository
from gamm.math.fixed_point import Dec
from gamm.pool import Coin, Pool, PoolAsset

logger = structlog.get_logger()

Transfer = tuple[str, str, Coin]
TransactionFactory = Callable[[], AbstractContextManager[Any]]

_TEN = Dec.from_int(10)


class Stage(str, Enum):
    """Progress of a pool operation."""

    VALIDATED = "validated"
    COMPUTED = "computed"
    STAGED = "staged"
    COMMITTED = "committed"
    REJECTED = "rejected"


class _StageTracker:
    """Records the last stage an operation reached."""

    def __init__(self, log: Any) -> None:
        self.stage: Stage | None = None
        self._log = log

    def advance(self, stage: Stage) -> None:
        self.stage = stage
        self._log.debug("pool_operation_stage", stage=stage.value)


# =============================================================================
# Forward verification for exact-out swaps
# =============================================================================


def converge_in_amount(
    in_amount: Dec,
    exact_out_amount: Dec,
    get_amount_out: Callable[[Dec], Dec | None],
    *,
    decimals: int,
    max_attempts: int = 6,
) -> tuple[Dec, Dec] | None:
    """Bump an input amount until selling it yields at least ``exact_out_amount``.

    Solving the invariant backwards and then forwards does not always round
    trip: the computed input may buy slightly less than requested once every
    intermediate result is truncated. This checks the forward direction and,
    if short, bumps the input by the deficit priced at the current rate,
    multiplying the bump by 10 on each further attempt.

    Args:
        in_amount: Input computed by the exact-out path
        exact_out_amount: Output the trader requested
        get_amount_out: Forward simulation, returning None if the swap fails
        decimals: Precision of the input asset; bumps are whole units of it
        max_attempts: Number of bumps tried before giving up

    Returns:
        Tuple of (converged_input, forward_output), or None if convergence fails.
    """
    out_amount = get_amount_out(in_amount)
    if out_amount is None:
        return None
    if out_amount >= exact_out_amount:
        return (in_amount, out_amount)

    # bump = ceil((exact_out - out) * in_amount / max(out, unit))
    unit = Dec(10 ** (18 - decimals))
    deficit = exact_out_amount.sub(out_amount)
    divisor = max(out_amount, unit)
    bump = max(unit, deficit.mul(in_amount).quo(divisor).ceil(decimals))

    for _ in range(max_attempts):
        bumped_in_amount = in_amount.add(bump)
        out_amount = get_amount_out(bumped_in_amount)
        if out_amount is None:
            return None
        if out_amount >= exact_out_amount:
            return (bumped_in_amount, out_amount)
        bump = bump.mul(_TEN)

    return None


# =============================================================================
# Keeper
# =============================================================================


class PoolKeeper:
    """Orchestrates pool operations against a repository and a ledger.

    The keeper assumes the host serializes operations per pool; it performs
    no locking of its own.
    """

    def __init__(
        self,
        repository: PoolRepository,
        ledger: Ledger,
        *,
        observer: PoolObserver | None = None,
        transaction: TransactionFactory | None = None,
        clock: Callable[[], datetime] | None = None,
        config: EngineConfig = DEFAULT_CONFIG,
    ) -> None:
        """Initialize the keeper.

        Args:
            repository: Pool store used to load and persist pools
            ledger: Token ledger used to move funds on commit
            observer: Optional listener notified after each commit
            transaction: Factory for the host's atomic context. Anything
                raised inside it must roll back the ledger transfers made
                inside it. Defaults to no transaction.
            clock: Source of the current time for active-window checks
            config: Engine configuration
        """
        self._repository = repository
        self._ledger = ledger
        self._observer = observer
        self._transaction: TransactionFactory = transaction or contextlib.nullcontext
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._config = config

    def register_observer(self, observer: PoolObserver) -> None:
        """Register the post-commit observer. Only one may be registered.

        Raises:
            RuntimeError: If an observer is already registered
        """
        if self._observer is not None:
            raise RuntimeError("a pool observer is already registered")
        self._observer = observer

    # --- Swaps ---

    def swap_exact_amount_in(
        self,
        sender: str,
        pool_id: int,
        token_in: Coin,
        token_out_denom: str,
        token_out_min_amount: Dec,
    ) -> Dec:
        """Sell exactly ``token_in`` for at least ``token_out_min_amount``.

        Returns:
            Amount of token_out_denom sent to sender

        Raises:
            SameDenomination: If token_in and token_out_denom match
            UnknownDenomination: If either denomination is not a pool asset
            PoolInactive: If the pool is outside its active window
            InvalidMathApprox: If the output truncates to zero
            LimitExceeded: If the output is below token_out_min_amount
            InsufficientFunds: If the ledger cannot move the funds
        """
        log = logger.bind(operation="swap_exact_amount_in", pool_id=pool_id, sender=sender)
        with self._operation(log) as tracker:
            if token_in.denom == token_out_denom:
                raise SameDenomination(
                    f"cannot trade same denomination in and out: {token_in.denom}"
                )
            _require_positive(token_in)
            pool = self._repository.load(pool_id)
            asset_in = pool.get_asset(token_in.denom)
            asset_out = pool.get_asset(token_out_denom)
            self._require_active(pool, "swap")
            tracker.advance(Stage.VALIDATED)

            token_out_amount = calc_out_given_in(
                asset_in, asset_out, token_in.amount, pool.swap_fee
            )
            if token_out_amount < token_out_min_amount:
                raise LimitExceeded(
                    f"{token_out_denom} token is lesser than min amount: "
                    f"{token_out_amount} < {token_out_min_amount}"
                )
            tracker.advance(Stage.COMPUTED)

            token_out = Coin(denom=token_out_denom, amount=token_out_amount)
            staged = apply_swap(pool, token_in, token_out)
            tracker.advance(Stage.STAGED)

            self._commit(
                staged,
                [
                    (sender, pool.address, token_in),
                    (pool.address, sender, token_out),
                ],
            )
            tracker.advance(Stage.COMMITTED)

        self._notify(EventKind.SWAP, pool_id, sender, (token_in,), (token_out,))
        return token_out_amount

    def swap_exact_amount_out(
        self,
        sender: str,
        pool_id: int,
        token_in_denom: str,
        token_in_max_amount: Dec,
        token_out: Coin,
    ) -> Dec:
        """Buy exactly ``token_out`` paying at most ``token_in_max_amount``.

        Returns:
            Amount of token_in_denom taken from sender

        Raises:
            SameDenomination: If token_in_denom and token_out match
            UnknownDenomination: If either denomination is not a pool asset
            PoolInactive: If the pool is outside its active window
            TooManyTokensOut: If token_out is not below the pool balance
            InvalidMathApprox: If no positive input buys token_out
            LimitExceeded: If the input is above token_in_max_amount
            InsufficientFunds: If the ledger cannot move the funds
        """
        log = logger.bind(operation="swap_exact_amount_out", pool_id=pool_id, sender=sender)
        with self._operation(log) as tracker:
            if token_in_denom == token_out.denom:
                raise SameDenomination(
                    f"cannot trade same denomination in and out: {token_in_denom}"
                )
            _require_positive(token_out)
            pool = self._repository.load(pool_id)
            asset_in = pool.get_asset(token_in_denom)
            asset_out = pool.get_asset(token_out.denom)
            self._require_active(pool, "swap")
            if token_out.amount >= asset_out.balance:
                raise TooManyTokensOut(
                    "can't get more tokens out than there are tokens in the pool"
                )
            tracker.advance(Stage.VALIDATED)

            token_in_amount = calc_in_given_out(
                asset_out, asset_in, token_out.amount, pool.swap_fee
            )
            token_in_amount = self._converge(pool, asset_in, asset_out, token_in_amount, token_out)
            if token_in_amount > token_in_max_amount:
                raise LimitExceeded(
                    f"{token_in_denom} token is larger than max amount: "
                    f"{token_in_amount} > {token_in_max_amount}"
                )
            tracker.advance(Stage.COMPUTED)

            token_in = Coin(denom=token_in_denom, amount=token_in_amount)
            staged = apply_swap(pool, token_in, token_out)
            tracker.advance(Stage.STAGED)

            self._commit(
                staged,
                [
                    (sender, pool.address, token_in),
                    (pool.address, sender, token_out),
                ],
            )
            tracker.advance(Stage.COMMITTED)

        self._notify(EventKind.SWAP, pool_id, sender, (token_in,), (token_out,))
        return token_in_amount

    def _converge(
        self,
        pool: Pool,
        asset_in: PoolAsset,
        asset_out: PoolAsset,
        token_in_amount: Dec,
        token_out: Coin,
    ) -> Dec:
        def get_amount_out(amount_in: Dec) -> Dec | None:
            try:
                return calc_out_given_in(asset_in, asset_out, amount_in, pool.swap_fee)
            except GammError as e:
                logger.debug(
                    "exact_out_forward_simulation_failed",
                    pool_id=pool.id,
                    amount_in=str(amount_in),
                    error=str(e),
                )
                return None

        converged = converge_in_amount(
            token_in_amount,
            token_out.amount,
            get_amount_out,
            decimals=asset_in.decimals,
            max_attempts=self._config.converge_max_attempts,
        )
        if converged is None:
            raise InvalidMathApprox(
                f"could not find an input of {asset_in.denom} that buys {token_out}"
            )
        converged_in, _ = converged
        if converged_in != token_in_amount:
            logger.debug(
                "exact_out_input_bumped",
                pool_id=pool.id,
                computed=str(token_in_amount),
                converged=str(converged_in),
            )
        return converged_in

    # --- Liquidity ---

    def join_pool(
        self,
        sender: str,
        pool_id: int,
        tokens_in: Sequence[Coin],
        share_out_min_amount: Dec | None = None,
    ) -> Dec:
        """Deposit ``tokens_in`` and mint LP shares to sender.

        Returns:
            Shares minted

        Raises:
            UnknownDenomination: If a coin is not a pool asset
            PoolInactive: If the pool is outside its active window
            UnsupportedJoinShape: If the coins are neither one asset nor each pool asset once
            NotImplementedJoin: For the proportional all-asset join
            InvalidMathApprox: If the shares truncate to zero
            LimitExceeded: If fewer than share_out_min_amount shares would be minted
        """
        log = logger.bind(operation="join_pool", pool_id=pool_id, sender=sender)
        with self._operation(log) as tracker:
            for coin in tokens_in:
                _require_positive(coin)
            pool = self._repository.load(pool_id)
            self._require_active(pool, "join")
            tracker.advance(Stage.VALIDATED)

            result = join_pool(pool, tokens_in, pool.swap_fee)
            if share_out_min_amount is not None and result.shares_out < share_out_min_amount:
                raise LimitExceeded(
                    f"shares out is lesser than min amount: "
                    f"{result.shares_out} < {share_out_min_amount}"
                )
            tracker.advance(Stage.COMPUTED)

            shares = Coin(denom=pool.share_denom, amount=result.shares_out)
            transfers: list[Transfer] = [(sender, pool.address, coin) for coin in tokens_in]
            transfers.append((pool.address, sender, shares))
            tracker.advance(Stage.STAGED)

            self._commit(result.pool, transfers)
            tracker.advance(Stage.COMMITTED)

        self._notify(EventKind.JOIN, pool_id, sender, tuple(tokens_in), (shares,))
        return result.shares_out

    def exit_pool(self, sender: str, pool_id: int, exiting_shares: Dec) -> tuple[Coin, ...]:
        """Burn ``exiting_shares`` and pay sender a pro-rata slice of the pool.

        Exits are allowed outside the pool's active window.

        Returns:
            Coins withdrawn

        Raises:
            ExcessiveShareRedemption: If exiting_shares >= total shares
            InvalidMathApprox: If nothing would be withdrawn
        """
        log = logger.bind(operation="exit_pool", pool_id=pool_id, sender=sender)
        with self._operation(log) as tracker:
            pool = self._repository.load(pool_id)
            tracker.advance(Stage.VALIDATED)

            result = exit_pool(pool, exiting_shares, pool.exit_fee)
            tracker.advance(Stage.COMPUTED)

            shares = Coin(denom=pool.share_denom, amount=exiting_shares)
            transfers: list[Transfer] = [(sender, pool.address, shares)]
            transfers.extend((pool.address, sender, coin) for coin in result.tokens_out)
            tracker.advance(Stage.STAGED)

            self._commit(result.pool, transfers)
            tracker.advance(Stage.COMMITTED)

        self._notify(EventKind.EXIT, pool_id, sender, (shares,), result.tokens_out)
        return result.tokens_out

    # --- Queries ---

    def calculate_spot_price(self, pool_id: int, quote_denom: str, base_denom: str) -> Dec:
        pool = self._repository.load(pool_id)
        return spot_price(pool, quote_denom, base_denom)

    def calculate_spot_price_with_swap_fee(
        self, pool_id: int, quote_denom: str, base_denom: str
    ) -> Dec:
        pool = self._repository.load(pool_id)
        return spot_price_with_swap_fee(pool, quote_denom, base_denom)

    # --- Internals ---

    @contextlib.contextmanager
    def _operation(self, log: Any) -> Iterator[_StageTracker]:
        tracker = _StageTracker(log)
        try:
            yield tracker
        except Exception as err:
            log.info(
                "pool_operation_rejected",
                stage=Stage.REJECTED.value,
                reached=tracker.stage.value if tracker.stage else None,
                error_type=type(err).__name__,
                error=str(err),
            )
            raise

    def _require_active(self, pool: Pool, action: str) -> None:
        now = self._clock()
        if not pool.is_active(now):
            raise PoolInactive(f"{action} on inactive pool {pool.id} at {now.isoformat()}")

    def _commit(self, staged: Pool, transfers: Sequence[Transfer]) -> None:
        with self._transaction():
            for sender, recipient, coin in transfers:
                self._ledger.transfer(sender, recipient, coin)
            self._repository.store(staged)

    def _notify(
        self,
        kind: EventKind,
        pool_id: int,
        sender: str,
        tokens_in: tuple[Coin, ...],
        tokens_out: tuple[Coin, ...],
    ) -> None:
        logger.info(
            "pool_operation_committed",
            kind=kind.value,
            pool_id=pool_id,
            sender=sender,
            tokens_in=[str(c) for c in tokens_in],
            tokens_out=[str(c) for c in tokens_out],
        )
        if self._observer is None:
            return
        event = PoolEvent(
            kind=kind,
            pool_id=pool_id,
            sender=sender,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
        )
        # already committed: observer failures are logged, not raised
        try:
            self._observer.on_commit(event)
        except Exception:
            logger.exception("pool_observer_failed", kind=kind.value, pool_id=pool_id)


def _require_positive(coin: Coin) -> None:
    if not coin.amount.is_positive():
        raise InvalidMathApprox(f"token amount is zero or negative: {coin}")
