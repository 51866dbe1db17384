"""Tests for the PoolKeeper orchestration layer.

This module tests:
- Exact-in and exact-out swaps, including forward verification (Scenario B)
- Slippage limits and validation failures
- Active window enforcement
- Joins and exits moving funds through the ledger
- Atomic commit: a failed transfer leaves ledger and repository untouched
- Post-commit observer registration and notification
"""

from datetime import datetime, timedelta, timezone

import pytest
from structlog.testing import capture_logs

from gamm.balancer.swap import calc_out_given_in
from gamm.config import EngineConfig
from gamm.errors import (
    ExcessiveShareRedemption,
    InsufficientFunds,
    InvalidMathApprox,
    LimitExceeded,
    PoolInactive,
    PoolNotFound,
    SameDenomination,
    TooManyTokensOut,
    UnknownDenomination,
    UnsupportedJoinShape,
)
from gamm.interfaces import EventKind, Ledger, PoolEvent, PoolRepository
from gamm.keeper import PoolKeeper, converge_in_amount
from gamm.math.fixed_point import Dec
from gamm.pool import ActiveWindow, Coin
from gamm.store import InMemoryLedger, InMemoryPoolRepository
from tests.helpers import ALICE, ATOM, BOB, OSMO, USDC, d, funded_ledger, make_keeper, make_pool

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class RecordingObserver:
    """Observer collecting every committed event."""

    def __init__(self) -> None:
        self.events: list[PoolEvent] = []

    def on_commit(self, event: PoolEvent) -> None:
        self.events.append(event)


class RaisingObserver:
    """Observer that fails on every event."""

    def on_commit(self, event: PoolEvent) -> None:
        raise RuntimeError("observer is down")


class FailingLedger(InMemoryLedger):
    """Ledger whose n-th transfer (0-based) raises InsufficientFunds."""

    def __init__(self, fail_on: int) -> None:
        super().__init__()
        self._fail_on = fail_on
        self._calls = 0

    def transfer(self, sender: str, recipient: str, coin: Coin) -> None:
        call = self._calls
        self._calls += 1
        if call == self._fail_on:
            raise InsufficientFunds(f"simulated failure moving {coin}")
        super().transfer(sender, recipient, coin)


@pytest.fixture
def keeper(balanced_pool, ledger) -> PoolKeeper:
    keeper, _ = make_keeper(balanced_pool, ledger, clock=lambda: NOW)
    return keeper


class TestCollaborators:
    """The reference stores satisfy the keeper's protocols."""

    def test_protocols(self, ledger):
        assert isinstance(InMemoryPoolRepository(), PoolRepository)
        assert isinstance(ledger, Ledger)


class TestSwapExactAmountIn:
    """Tests for PoolKeeper.swap_exact_amount_in()."""

    def test_scenario_a(self, balanced_pool, ledger):
        keeper, repository = make_keeper(balanced_pool, ledger)
        out = keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, d(100)), OSMO, d(90))

        assert d("90.66") < out < d("90.67")
        assert ledger.balance(BOB, ATOM) == d(9900)
        assert ledger.balance(BOB, OSMO) == d(10000).add(out)
        assert ledger.balance(balanced_pool.address, ATOM) == d(1100)
        assert ledger.balance(balanced_pool.address, OSMO) == d(1000).sub(out)

        stored = repository.load(1)
        assert stored.get_asset(ATOM).balance == d(1100)
        assert stored.get_asset(OSMO).balance == d(1000).sub(out)

    def test_below_min_out(self, balanced_pool, ledger):
        keeper, repository = make_keeper(balanced_pool, ledger)
        with pytest.raises(LimitExceeded):
            keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, d(100)), OSMO, d(91))
        assert repository.load(1) == balanced_pool
        assert ledger.balance(BOB, ATOM) == d(10000)
        # only the share grant made while funding the ledger
        assert len(ledger.transfers) == 1

    def test_same_denomination(self, keeper):
        with pytest.raises(SameDenomination):
            keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, d(1)), ATOM, Dec.zero())

    def test_unknown_denomination(self, keeper):
        with pytest.raises(UnknownDenomination):
            keeper.swap_exact_amount_in(BOB, 1, Coin(USDC, d(1)), OSMO, Dec.zero())

    def test_unknown_pool(self, keeper):
        with pytest.raises(PoolNotFound):
            keeper.swap_exact_amount_in(BOB, 99, Coin(ATOM, d(1)), OSMO, Dec.zero())

    def test_zero_amount(self, keeper):
        with pytest.raises(InvalidMathApprox):
            keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, Dec.zero()), OSMO, Dec.zero())


class TestSwapExactAmountOut:
    """Tests for PoolKeeper.swap_exact_amount_out()."""

    def test_scenario_b(self, balanced_pool, ledger):
        """The charged input, sold through the exact-in path, buys at least the output."""
        keeper, _ = make_keeper(balanced_pool, ledger)
        amount_in = keeper.swap_exact_amount_out(BOB, 1, ATOM, d(1000), Coin(OSMO, d("90.66")))

        forward = calc_out_given_in(
            balanced_pool.get_asset(ATOM),
            balanced_pool.get_asset(OSMO),
            amount_in,
            balanced_pool.swap_fee,
        )
        assert forward >= d("90.66")
        assert d(99) < amount_in < d(101)
        assert ledger.balance(BOB, OSMO) == d("10090.66")
        assert ledger.balance(BOB, ATOM) == d(10000).sub(amount_in)

    def test_weighted_pool(self, weighted_pool):
        ledger = funded_ledger(weighted_pool, accounts={BOB: {ATOM: "10000"}})
        keeper, repository = make_keeper(weighted_pool, ledger)
        amount_in = keeper.swap_exact_amount_out(BOB, 1, ATOM, d(1000), Coin(OSMO, d(50)))

        forward = calc_out_given_in(
            weighted_pool.get_asset(ATOM),
            weighted_pool.get_asset(OSMO),
            amount_in,
            weighted_pool.swap_fee,
        )
        assert forward >= d(50)
        assert repository.load(1).get_asset(OSMO).balance == d(950)

    def test_above_max_in(self, keeper):
        with pytest.raises(LimitExceeded):
            keeper.swap_exact_amount_out(BOB, 1, ATOM, d(99), Coin(OSMO, d("90.66")))

    def test_too_many_tokens_out(self, keeper):
        with pytest.raises(TooManyTokensOut):
            keeper.swap_exact_amount_out(BOB, 1, ATOM, d(10**6), Coin(OSMO, d(1000)))

    def test_same_denomination(self, keeper):
        with pytest.raises(SameDenomination):
            keeper.swap_exact_amount_out(BOB, 1, OSMO, d(10), Coin(OSMO, d(1)))


class TestConvergeInAmount:
    """Tests for the forward verification of exact-out inputs."""

    def test_already_sufficient(self):
        result = converge_in_amount(d(10), d(5), lambda amount: d(5), decimals=18)
        assert result == (d(10), d(5))

    def test_bumps_until_sufficient(self):
        """Output equals half the input; 10 in buys 5 but 6 is requested."""
        result = converge_in_amount(d(10), d(6), lambda amount: amount.quo(d(2)), decimals=0)
        assert result is not None
        converged_in, converged_out = result
        assert converged_out >= d(6)
        assert converged_in == d(12)

    def test_gives_up(self):
        result = converge_in_amount(d(10), d(6), lambda amount: d(5), decimals=18, max_attempts=3)
        assert result is None

    def test_forward_failure(self):
        assert converge_in_amount(d(10), d(6), lambda amount: None, decimals=18) is None

    def test_no_attempts(self):
        result = converge_in_amount(
            d(10), d(6), lambda amount: amount.quo(d(2)), decimals=0, max_attempts=0
        )
        assert result is None

    def test_keeper_bumps_truncated_input(self):
        """The 6-decimal input for 10 uosmo truncates just short and gets one unit more."""
        pool = make_pool({ATOM: "1000", OSMO: "1000"}, swap_fee="0.003", decimals={ATOM: 6})
        ledger = funded_ledger(pool, accounts={BOB: {ATOM: "1000"}})
        keeper, _ = make_keeper(pool, ledger)
        amount_in = keeper.swap_exact_amount_out(BOB, 1, ATOM, d(1000), Coin(OSMO, d(10)))

        assert amount_in == d("10.131405")
        assert ledger.balance(BOB, ATOM) == d(1000).sub(amount_in)
        assert ledger.balance(BOB, OSMO) == d(10)

    def test_keeper_without_bumps_rejects_short_input(self):
        pool = make_pool({ATOM: "1000", OSMO: "1000"}, swap_fee="0.003", decimals={ATOM: 6})
        ledger = funded_ledger(pool, accounts={BOB: {ATOM: "1000"}})
        keeper, repository = make_keeper(pool, ledger, config=EngineConfig(converge_max_attempts=0))
        with pytest.raises(InvalidMathApprox):
            keeper.swap_exact_amount_out(BOB, 1, ATOM, d(1000), Coin(OSMO, d(10)))
        assert ledger.balance(BOB, ATOM) == d(1000)
        assert repository.load(1) == pool


class TestActiveWindow:
    """Swaps and joins are rejected outside the active window; exits are not."""

    @pytest.fixture
    def future_pool(self):
        window = ActiveWindow(start=NOW + timedelta(days=1))
        return make_pool({ATOM: "1000", OSMO: "1000"}, active_window=window)

    def test_swap_before_start(self, future_pool):
        ledger = funded_ledger(future_pool, accounts={BOB: {ATOM: "100"}})
        keeper, _ = make_keeper(future_pool, ledger, clock=lambda: NOW)
        with pytest.raises(PoolInactive):
            keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, d(10)), OSMO, Dec.zero())

    def test_join_before_start(self, future_pool):
        ledger = funded_ledger(future_pool, accounts={BOB: {ATOM: "100"}})
        keeper, _ = make_keeper(future_pool, ledger, clock=lambda: NOW)
        with pytest.raises(PoolInactive):
            keeper.join_pool(BOB, 1, [Coin(ATOM, d(10))])

    def test_exit_allowed(self, future_pool):
        ledger = funded_ledger(future_pool)
        keeper, _ = make_keeper(future_pool, ledger, clock=lambda: NOW)
        tokens_out = keeper.exit_pool(ALICE, 1, d(10))
        assert len(tokens_out) == 2

    def test_swap_after_start(self, future_pool):
        ledger = funded_ledger(future_pool, accounts={BOB: {ATOM: "100"}})
        keeper, _ = make_keeper(future_pool, ledger, clock=lambda: NOW + timedelta(days=2))
        out = keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, d(10)), OSMO, Dec.zero())
        assert out.is_positive()

    def test_end_is_exclusive(self):
        window = ActiveWindow(end=NOW)
        pool = make_pool({ATOM: "1000", OSMO: "1000"}, active_window=window)
        ledger = funded_ledger(pool, accounts={BOB: {ATOM: "100"}})
        keeper, _ = make_keeper(pool, ledger, clock=lambda: NOW)
        with pytest.raises(PoolInactive):
            keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, d(10)), OSMO, Dec.zero())


class TestJoinPool:
    """Tests for PoolKeeper.join_pool()."""

    def test_single_asset_join(self, balanced_pool, ledger):
        keeper, repository = make_keeper(balanced_pool, ledger)
        shares = keeper.join_pool(BOB, 1, [Coin(ATOM, d(100))])

        assert d("4.8") < shares < d("4.9")
        assert ledger.balance(BOB, balanced_pool.share_denom) == shares
        assert ledger.balance(BOB, ATOM) == d(9900)
        assert ledger.balance(balanced_pool.address, ATOM) == d(1100)

        stored = repository.load(1)
        assert stored.total_shares == d(100).add(shares)
        assert stored.get_asset(ATOM).balance == d(1100)

    def test_min_shares(self, keeper):
        with pytest.raises(LimitExceeded):
            keeper.join_pool(BOB, 1, [Coin(ATOM, d(100))], share_out_min_amount=d(5))

    def test_unsupported_shape(self, three_asset_pool):
        ledger = funded_ledger(three_asset_pool, accounts={BOB: {ATOM: "10", OSMO: "10"}})
        keeper, _ = make_keeper(three_asset_pool, ledger)
        with pytest.raises(UnsupportedJoinShape):
            keeper.join_pool(BOB, 1, [Coin(ATOM, d(10)), Coin(OSMO, d(10))])

    def test_insufficient_funds(self, balanced_pool, ledger):
        keeper, repository = make_keeper(balanced_pool, ledger)
        with pytest.raises(InsufficientFunds):
            keeper.join_pool(BOB, 1, [Coin(ATOM, d(20000))])
        assert repository.load(1) == balanced_pool


class TestExitPool:
    """Tests for PoolKeeper.exit_pool()."""

    def test_exit(self, balanced_pool, ledger):
        keeper, repository = make_keeper(balanced_pool, ledger)
        tokens_out = keeper.exit_pool(ALICE, 1, d(10))

        assert tokens_out == (Coin(ATOM, d(100)), Coin(OSMO, d(100)))
        assert ledger.balance(ALICE, balanced_pool.share_denom) == d(90)
        assert ledger.balance(ALICE, ATOM) == d(100)
        assert ledger.balance(balanced_pool.address, OSMO) == d(900)
        assert repository.load(1).total_shares == d(90)

    def test_all_shares(self, keeper):
        with pytest.raises(ExcessiveShareRedemption):
            keeper.exit_pool(ALICE, 1, d(100))

    def test_sender_without_shares(self, balanced_pool, ledger):
        keeper, repository = make_keeper(balanced_pool, ledger)
        with pytest.raises(InsufficientFunds):
            keeper.exit_pool(BOB, 1, d(10))
        assert repository.load(1) == balanced_pool
        assert ledger.balance(BOB, ATOM) == d(10000)


class TestAtomicCommit:
    """A transfer failing mid-commit rolls back everything."""

    def test_second_transfer_fails(self, balanced_pool):
        # transfer 0 is the share grant made by funded_ledger's setup
        ledger = FailingLedger(fail_on=2)
        ledger.register_issuer(balanced_pool.address, balanced_pool.share_denom)
        ledger.transfer(balanced_pool.address, ALICE, Coin(balanced_pool.share_denom, d(100)))
        for asset in balanced_pool.assets:
            ledger.mint(balanced_pool.address, Coin(asset.denom, asset.balance))
        ledger.mint(BOB, Coin(ATOM, d(1000)))

        keeper, repository = make_keeper(balanced_pool, ledger)
        observer = RecordingObserver()
        keeper.register_observer(observer)

        with pytest.raises(InsufficientFunds):
            keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, d(100)), OSMO, Dec.zero())

        assert ledger.balance(BOB, ATOM) == d(1000)
        assert ledger.balance(balanced_pool.address, ATOM) == d(1000)
        assert len(ledger.transfers) == 1
        assert repository.load(1) == balanced_pool
        assert observer.events == []


class TestObserver:
    """Tests for post-commit observer notification."""

    def test_notified_after_commit(self, keeper):
        observer = RecordingObserver()
        keeper.register_observer(observer)
        out = keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, d(100)), OSMO, Dec.zero())

        assert observer.events == [
            PoolEvent(
                kind=EventKind.SWAP,
                pool_id=1,
                sender=BOB,
                tokens_in=(Coin(ATOM, d(100)),),
                tokens_out=(Coin(OSMO, out),),
            )
        ]

    def test_event_kinds(self, keeper):
        observer = RecordingObserver()
        keeper.register_observer(observer)
        keeper.join_pool(BOB, 1, [Coin(ATOM, d(10))])
        keeper.exit_pool(ALICE, 1, d(10))
        assert [event.kind for event in observer.events] == [EventKind.JOIN, EventKind.EXIT]

    def test_not_notified_on_rejection(self, keeper):
        observer = RecordingObserver()
        keeper.register_observer(observer)
        with pytest.raises(LimitExceeded):
            keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, d(100)), OSMO, d(100))
        assert observer.events == []

    def test_registered_once(self, keeper):
        keeper.register_observer(RecordingObserver())
        with pytest.raises(RuntimeError):
            keeper.register_observer(RecordingObserver())

    def test_observer_failure_does_not_undo_commit(self, keeper, ledger):
        keeper.register_observer(RaisingObserver())
        with capture_logs() as logs:
            out = keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, d(100)), OSMO, Dec.zero())

        assert ledger.balance(BOB, OSMO) == d(10000).add(out)
        failures = [entry for entry in logs if entry["event"] == "pool_observer_failed"]
        assert len(failures) == 1
        assert failures[0]["log_level"] == "error"
        assert failures[0]["kind"] == "swap"

    def test_constructor_observer(self, balanced_pool, ledger):
        observer = RecordingObserver()
        keeper = PoolKeeper(InMemoryPoolRepository([balanced_pool]), ledger, observer=observer)
        with pytest.raises(RuntimeError):
            keeper.register_observer(RecordingObserver())


class TestLogging:
    """Committed and rejected operations are logged."""

    def test_commit_logged(self, keeper):
        with capture_logs() as logs:
            keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, d(100)), OSMO, Dec.zero())
        committed = [log for log in logs if log["event"] == "pool_operation_committed"]
        assert len(committed) == 1
        assert committed[0]["kind"] == "swap"

    def test_rejection_logged(self, keeper):
        with capture_logs() as logs:
            with pytest.raises(SameDenomination):
                keeper.swap_exact_amount_in(BOB, 1, Coin(ATOM, d(1)), ATOM, Dec.zero())
        rejected = [log for log in logs if log["event"] == "pool_operation_rejected"]
        assert rejected[0]["error_type"] == "SameDenomination"
        assert rejected[0]["operation"] == "swap_exact_amount_in"


class TestSpotPriceQueries:
    """Tests for the keeper's spot price queries."""

    def test_spot_price(self, keeper):
        assert keeper.calculate_spot_price(1, ATOM, OSMO) == Dec.one()

    def test_spot_price_with_swap_fee(self, keeper):
        assert keeper.calculate_spot_price_with_swap_fee(1, ATOM, OSMO) == Dec.one().quo(
            d("0.997")
        )

    def test_unknown_pool(self, keeper):
        with pytest.raises(PoolNotFound):
            keeper.calculate_spot_price(2, ATOM, OSMO)
