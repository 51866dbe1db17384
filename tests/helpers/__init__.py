"""Test helpers module for shared test utilities.

- constants: denominations and account names used across tests
- factories: pool, ledger and keeper factory functions
"""

from tests.helpers.constants import ALICE, ATOM, BOB, OSMO, USDC
from tests.helpers.factories import d, funded_ledger, make_keeper, make_pool

__all__ = [
    # Constants
    "ATOM",
    "OSMO",
    "USDC",
    "ALICE",
    "BOB",
    # Factories
    "d",
    "make_pool",
    "funded_ledger",
    "make_keeper",
]
