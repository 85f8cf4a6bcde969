"""Deploy compiled contracts.

See :py:mod:`eth_permit.deployment` for the permit token deployment.
"""

import logging
from pathlib import Path

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import Contract

from eth_permit.abi import get_contract
from eth_permit.compat import get_tx_broadcast_data

logger = logging.getLogger(__name__)


class ContractDeploymentFailed(Exception):
    """The deployment transaction reverted."""

    def __init__(self, tx_hash, msg):
        super().__init__(msg)
        self.tx_hash = tx_hash


def deploy_contract(
    web3: Web3,
    artifact: Path,
    deployer: str | LocalAccount,
    *constructor_args,
) -> Contract:
    """Deploy a contract and wait for it.

    Example:

    .. code-block:: python

        token = deploy_contract(web3, artifact, deployer, 1_000_000 * 10**18)
        print(f"Deployed permit token at {token.address}")

    :param artifact:
        Forge artifact path

    :param deployer:
        Unlocked node account, or a local account that signs the deployment itself

    :param constructor_args:
        Passed to the constructor

    :raise ContractDeploymentFailed:
        The receipt has failed status

    :return:
        Contract instance at the new address
    """
    contract_name = artifact.stem
    Contract = get_contract(web3, artifact)

    constructor = Contract.constructor(*constructor_args)

    if isinstance(deployer, LocalAccount):
        tx_params = {
            "from": deployer.address,
            "nonce": web3.eth.get_transaction_count(deployer.address),
            "chainId": web3.eth.chain_id,
        }
        signed_tx = deployer.sign_transaction(constructor.build_transaction(tx_params))
        tx_hash = web3.eth.send_raw_transaction(get_tx_broadcast_data(signed_tx))
    else:
        tx_hash = constructor.transact({"from": deployer})

    receipt = web3.eth.wait_for_transaction_receipt(tx_hash)
    if receipt["status"] != 1:
        raise ContractDeploymentFailed(tx_hash, f"Deploying {contract_name} with args {constructor_args} failed, tx {tx_hash.hex()}")

    instance = Contract(address=receipt["contractAddress"])
    logger.info("Deployed %s at %s", contract_name, instance.address)
    return instance
