"""Pytest configuration and fixtures."""

import pytest
import structlog

from gamm.pool import Pool
from gamm.store import InMemoryLedger
from tests.helpers import ALICE, ATOM, BOB, OSMO, USDC, funded_ledger, make_pool


@pytest.fixture
def balanced_pool() -> Pool:
    """Two-asset pool: 1000 uatom / 1000 uosmo, equal weights, 0.3% swap fee."""
    return make_pool({ATOM: "1000", OSMO: "1000"}, swap_fee="0.003")


@pytest.fixture
def weighted_pool() -> Pool:
    """Two-asset 80/20 pool with a 0.3% swap fee."""
    return make_pool(
        {ATOM: "4000", OSMO: "1000"},
        weights={ATOM: 8, OSMO: 2},
        swap_fee="0.003",
    )


@pytest.fixture
def three_asset_pool() -> Pool:
    """Three-asset pool with unequal weights, swap and exit fees."""
    return make_pool(
        {ATOM: "1000", OSMO: "2000", USDC: "3000"},
        weights={ATOM: 1, OSMO: 2, USDC: 3},
        swap_fee="0.01",
        exit_fee="0.01",
    )


@pytest.fixture
def ledger(balanced_pool: Pool) -> InMemoryLedger:
    """Ledger mirroring balanced_pool; ALICE holds all shares, BOB holds tokens."""
    return funded_ledger(
        balanced_pool,
        accounts={BOB: {ATOM: "10000", OSMO: "10000"}},
        shares={ALICE: "100"},
    )


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any structlog configuration a test (e.g. the CLI) applied."""
    yield
    structlog.reset_defaults()
