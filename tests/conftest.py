"""Permit token fixtures.

Tests using these fixtures need `anvil` and `forge` commands from Foundry in `PATH`
and skip themselves otherwise.
"""

import pytest
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_typing import ChecksumAddress
from web3 import HTTPProvider, Web3

from eth_permit.deployment import deploy_permit_token
from eth_permit.provider.anvil import AnvilLaunch, launch_anvil
from eth_permit.token import PermitTokenDetails


@pytest.fixture(scope="module")
def anvil() -> AnvilLaunch:
    """Launch Anvil for the test backend."""
    anvil = launch_anvil()
    try:
        yield anvil
    finally:
        anvil.close()


@pytest.fixture()
def web3(anvil: AnvilLaunch) -> Web3:
    """Set up the Anvil Web3 connection."""
    web3 = Web3(HTTPProvider(anvil.json_rpc_url))
    return web3


@pytest.fixture()
def deployer(web3) -> ChecksumAddress:
    """Deploy account.

    Receives the whole token supply.
    """
    return web3.eth.accounts[0]


@pytest.fixture()
def relayer(web3) -> ChecksumAddress:
    """Broadcasts signed permits and pays the gas."""
    return web3.eth.accounts[1]


@pytest.fixture()
def spender(web3) -> ChecksumAddress:
    """Receives the allowance."""
    return web3.eth.accounts[2]


@pytest.fixture()
def owner() -> LocalAccount:
    """Token holder with a private key we control.

    Has no ETH: permits are relayed.
    """
    return Account.create()


@pytest.fixture()
def permit_token(web3, deployer) -> PermitTokenDetails:
    """Compile and deploy PermitToken with 1M supply."""
    return deploy_permit_token(web3, deployer, total_supply=1_000_000 * 10**18)
