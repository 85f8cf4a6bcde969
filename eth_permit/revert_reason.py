"""Revert reason extraction.

- Replay failed transactions to get the Solidity revert string

- Map permit revert strings to :py:class:`PermitRevertReason`

Further reading

- `Web3.py Patterns: Revert Reason Lookups <https://snakecharmers.ethereum.org/web3py-revert-reason-parsing/>`_

"""

import enum
import logging
from typing import Union

from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError

logger = logging.getLogger(__name__)


class PermitRevertReason(enum.Enum):
    """The two ways `permit()` can fail.

    Wrong signer, wrong domain separator, wrong typehash, a tampered field
    or a reused nonce all give a digest that fails recovery matching,
    so they all surface as :py:attr:`invalid_signature`.
    """

    #: `deadline < block.timestamp`
    expired = "EXPIRED"

    #: Recovered signer is not the owner
    invalid_signature = "INVALID_SIGNATURE"


def parse_permit_revert_reason(revert_reason: str | None) -> PermitRevertReason | None:
    """Classify a revert string.

    Nodes prefix the Solidity message differently,
    e.g. `execution reverted: EXPIRED` or `VM Exception while processing transaction: revert EXPIRED`.

    :return:
        Matching reason or `None` if this was not a permit failure
    """
    if not revert_reason:
        return None

    tail = revert_reason.strip().rsplit(" ", 1)[-1].strip("'\"")
    for reason in PermitRevertReason:
        if tail == reason.value:
            return reason
    return None


def fetch_transaction_revert_reason(
    web3: Web3,
    tx_hash: Union[HexBytes, str],
    unknown_error_message="<could not extract the revert reason>",
) -> str:
    """Gets a transaction revert reason.

    Ethereum nodes do not store the transaction failure reason in any database or index.
    We replay the transaction against the current state. No archive node is needed,
    but the revert reason might be wrong if the state has moved on.

    To make this work, transactions must have `gas` set when sent,
    or they revert already in the gas estimation.

    Example:

    .. code-block:: python

        tx_hash = bound_func.transact({"from": relayer, "gas": 200_000})
        reason = fetch_transaction_revert_reason(web3, tx_hash)
        assert reason == "execution reverted: EXPIRED"

    :param web3: Our JSON-RPC connection

    :param tx_hash: Transaction hash of which reason we extract by simulation.

    :param unknown_error_message:
        Return this message if the revert reason extraction fails.
        Check the logs for details.

    :return: The revert reason or the placeholder message.
    """

    if not isinstance(tx_hash, HexBytes):
        if type(tx_hash) == str:
            tx_hash = HexBytes(tx_hash)
        else:
            raise AssertionError(f"Unknown type: {tx_hash.__class__} {tx_hash}")

    tx = web3.eth.get_transaction(tx_hash)

    # Ethereum Tester has this in tx.data while Anvil has this in tx.input
    data = tx["data"] if "data" in tx else tx["input"]

    replay_tx = {
        "to": tx["to"],
        "from": tx["from"],
        "value": tx["value"],
        "data": data,
        "gas": tx["gas"],
    }

    try:
        result = web3.eth.call(replay_tx)
    except ContractLogicError as e:
        return e.args[0]
    except ValueError as e:
        logger.debug("Revert exception result is: %s", e)
        data = e.args[0]
        if type(data) == str:
            return data
        return data["message"]

    logger.error("Transaction %s succeeded when we tried to fetch its revert reason, replay result %s", tx_hash.hex(), result.hex())
    return unknown_error_message
