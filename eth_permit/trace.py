"""Transaction success assertions for unit tests.

- Give a human readable failure with the revert reason when a test transaction fails
"""

import logging

from hexbytes import HexBytes
from web3 import Web3
from web3.types import TxReceipt

from eth_permit.revert_reason import PermitRevertReason, fetch_transaction_revert_reason, parse_permit_revert_reason

logger = logging.getLogger(__name__)


class TransactionAssertionError(AssertionError):
    """Exception thrown when unit test transaction assert fails.

    See :py:func:`assert_transaction_success_with_explanation`.
    """

    def __init__(
        self,
        message,
        revert_reason: str = "",
    ):
        super().__init__(message)
        self.revert_reason = revert_reason

    @property
    def permit_revert_reason(self) -> PermitRevertReason | None:
        """Permit failure kind, if this was one."""
        return parse_permit_revert_reason(self.revert_reason)


def assert_transaction_success_with_explanation(
    web3: Web3,
    tx_hash: HexBytes,
) -> TxReceipt:
    """Checks if a transaction succeeds and give a verbose explanation why not.

    Designed to be used on Anvil backend based tests.

    Example usage:

    .. code-block:: python

        tx_hash = token.functions.permit(*args).transact({"from": relayer, "gas": 200_000})
        assert_transaction_success_with_explanation(web3, tx_hash)

    Example output:

    .. code-block:: text

        E           eth_permit.trace.TransactionAssertionError: Transaction failed: AttributeDict({'hash': ...})
        E           Revert reason: execution reverted: INVALID_SIGNATURE

    :param tx_hash:
        A transaction (mined/not mined) we want to make sure has succeeded.

        Gas limit must have been set for this transaction.

    :raise TransactionAssertionError:
        Outputs a verbose AssertionError on what went wrong.

    :return:
        Transaction receipt if no error is raised
    """

    receipt = web3.eth.wait_for_transaction_receipt(tx_hash)
    if receipt["status"] == 0:
        tx_details = web3.eth.get_transaction(tx_hash)
        revert_reason = fetch_transaction_revert_reason(web3, tx_hash)
        logger.info("Transaction %s reverted: %s", HexBytes(tx_hash).hex(), revert_reason)
        raise TransactionAssertionError(
            f"Transaction failed: {tx_details}\n" f"Revert reason: {revert_reason}\n",
            revert_reason=revert_reason,
        )

    return receipt
