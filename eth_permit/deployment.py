"""Permit token deployment.

- Compile the bundled `PermitToken` Foundry project

- Deploy it for unit tests
"""

import logging
import os
from pathlib import Path

from eth_account.signers.local import LocalAccount
from web3 import Web3

from eth_permit.deploy import deploy_contract
from eth_permit.foundry.forge import compile_contract_with_forge
from eth_permit.token import PermitTokenDetails, fetch_permit_token_details

logger = logging.getLogger(__name__)


#: Foundry projects shipped with the repository
CONTRACTS_ROOT = Path(os.path.dirname(__file__)) / ".." / "contracts"

#: Foundry project of the test token
PERMIT_TOKEN_PROJECT = CONTRACTS_ROOT / "permit-token"


def compile_permit_token(project_folder: Path = PERMIT_TOKEN_PROJECT) -> Path:
    """Compile `PermitToken.sol`.

    :return:
        Path to the Forge artifact
    """
    return compile_contract_with_forge(project_folder.resolve(), "PermitToken.sol", "PermitToken")


def deploy_permit_token(
    web3: Web3,
    deployer: str | LocalAccount,
    total_supply: int = 1_000_000 * 10**18,
    project_folder: Path = PERMIT_TOKEN_PROJECT,
) -> PermitTokenDetails:
    """Deploy a permit token to be used in testing.

    The whole supply is minted to the deployer.

    :param deployer:
        Unlocked node account or a local account with gas money

    :param total_supply:
        Raw token units to mint
    """
    artifact = compile_permit_token(project_folder)
    contract = deploy_contract(web3, artifact, deployer, total_supply)
    logger.info("Permit token deployed at %s, supply %d", contract.address, total_supply)
    return fetch_permit_token_details(web3, contract.address, artifact)
