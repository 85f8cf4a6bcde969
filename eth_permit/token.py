"""EIP-2612 permit token reading.

- Read on-chain data of a permit token, deal with token value decimal conversions

- Read the EIP-712 domain of the token so permits can be signed against it
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from functools import cached_property
from pathlib import Path
from typing import Optional

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction
from web3.exceptions import ABIFunctionNotFound, BadFunctionCallOutput, ContractLogicError

from eth_permit.abi import get_deployed_contract
from eth_permit.eip_2612 import get_domain_separator

logger = logging.getLogger(__name__)


#: EIP-712 domain version of tokens without `version()`, e.g. Uniswap v2 style permits
DEFAULT_DOMAIN_VERSION = "1"


class PermitTokenError(Exception):
    """Cannot read permit details of a token.

    The contract is not there, or it does not implement the EIP-2612 extension.
    """


@dataclass
class PermitTokenDetails:
    """EIP-2612 permit token Python presentation.

    Example:

    .. code-block:: python

        token = fetch_permit_token_details(web3, token_address, artifact)
        nonce = token.fetch_nonce(owner.address)
        assert token.domain_separator == token.calculate_domain_separator()
    """

    #: The underlying contract proxy class instance
    contract: Contract

    #: Token name e.g. ``Permit Token``
    name: str

    #: Token symbol e.g. ``PERMIT``
    symbol: str

    #: Token supply as raw units
    total_supply: int

    #: Number of decimals
    decimals: int

    #: On-chain `DOMAIN_SEPARATOR()`
    domain_separator: HexBytes

    #: On-chain `PERMIT_TYPEHASH()`
    permit_type_hash: HexBytes

    #: EIP-712 domain version.
    #:
    #: Read from `version()` when the token has one.
    version: str = DEFAULT_DOMAIN_VERSION

    def __repr__(self):
        return f"<{self.name} ({self.symbol}) at {self.contract.address}, {self.decimals} decimals, on chain {self.chain_id}>"

    @cached_property
    def chain_id(self) -> int:
        """The EVM chain id where this token lives."""
        return self.contract.w3.eth.chain_id

    @cached_property
    def address(self) -> HexAddress:
        """The address of this token."""
        return self.contract.address

    def convert_to_decimals(self, raw_amount: int) -> Decimal:
        """Convert raw token units to decimals.

        Example:

        .. code-block:: python

            # 18 decimals
            assert token.convert_to_decimals(10**18) == Decimal(1)

        """
        assert type(raw_amount) == int, f"Got {type(raw_amount)}, expected int: {raw_amount}"
        return Decimal(raw_amount) / Decimal(10**self.decimals)

    def convert_to_raw(self, decimal_amount: Decimal | int) -> int:
        """Convert decimalised token amount to raw uint256.

        Example:

        .. code-block:: python

            # 18 decimals
            assert token.convert_to_raw(1_000_000) == 1_000_000 * 10**18

        """
        return int(decimal_amount * 10**self.decimals)

    def fetch_raw_balance_of(self, address: HexAddress | str, block_identifier="latest") -> int:
        """Get an address token balance in raw units."""
        address = Web3.to_checksum_address(address)
        return self.contract.functions.balanceOf(address).call(block_identifier=block_identifier)

    def fetch_balance_of(self, address: HexAddress | str, block_identifier="latest") -> Decimal:
        """Get an address token balance.

        :return:
            Converted to decimal using :py:meth:`convert_to_decimals`
        """
        return self.convert_to_decimals(self.fetch_raw_balance_of(address, block_identifier))

    def fetch_nonce(self, owner: HexAddress | str) -> int:
        """The nonce the next permit of this owner must be signed with."""
        return self.contract.functions.nonces(Web3.to_checksum_address(owner)).call()

    def fetch_allowance(self, owner: HexAddress | str, spender: HexAddress | str) -> int:
        """Current raw allowance."""
        return self.contract.functions.allowance(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender),
        ).call()

    def approve(self, spender: HexAddress | str, amount: Decimal) -> ContractFunction:
        """Prepare a plain ERC20.approve() transaction with human-readable amount.

        Example:

        .. code-block:: python

            tx_hash = token.approve(spender, Decimal(9)).transact({"from": holder})
            assert_transaction_success_with_explanation(web3, tx_hash)

        :return:
            Bound contract function you need to turn to a tx
        """
        assert isinstance(amount, Decimal), f"Give amounts in decimal, got {type(amount)}"
        return self.contract.functions.approve(Web3.to_checksum_address(spender), self.convert_to_raw(amount))

    def calculate_domain_separator(self, chain_id: int | None = None) -> HexBytes:
        """Compute the domain separator locally.

        Should match :py:attr:`domain_separator` when the token uses
        the standard `EIP712Domain` schema.

        :param chain_id:
            Override the connected chain id
        """
        if chain_id is None:
            chain_id = self.chain_id
        return get_domain_separator(self.address, self.name, self.version, chain_id)


def fetch_domain_version(contract: Contract) -> str:
    """Read `version()` of a permit token.

    Many permit tokens hard code the domain version and have no getter for it.

    :return:
        The on-chain version, or :py:data:`DEFAULT_DOMAIN_VERSION`
    """
    try:
        return contract.functions.version().call()
    except (ABIFunctionNotFound, BadFunctionCallOutput, ContractLogicError) as e:
        logger.debug("Token %s has no version(), using %s: %s", contract.address, DEFAULT_DOMAIN_VERSION, e)
        return DEFAULT_DOMAIN_VERSION


def fetch_permit_token_details(
    web3: Web3,
    token_address: HexAddress | str,
    artifact: Path,
    version: Optional[str] = None,
) -> PermitTokenDetails:
    """Read permit token details from on-chain data.

    :param token_address:
        Token contract address

    :param artifact:
        Compiled contract ABI to use

    :param version:
        EIP-712 domain version. Read with :py:func:`fetch_domain_version` if not given.

    :raise PermitTokenError:
        If the contract does not answer the permit extension calls
    """
    contract = get_deployed_contract(web3, artifact, token_address)

    try:
        name = contract.functions.name().call()
        symbol = contract.functions.symbol().call()
        decimals = contract.functions.decimals().call()
        total_supply = contract.functions.totalSupply().call()
        domain_separator = HexBytes(contract.functions.DOMAIN_SEPARATOR().call())
        permit_type_hash = HexBytes(contract.functions.PERMIT_TYPEHASH().call())
    except (ABIFunctionNotFound, BadFunctionCallOutput, ContractLogicError, ValueError) as e:
        raise PermitTokenError(f"Token {token_address} on chain {web3.eth.chain_id} does not look like a permit token") from e

    if version is None:
        version = fetch_domain_version(contract)

    details = PermitTokenDetails(
        contract,
        name=name,
        symbol=symbol,
        total_supply=total_supply,
        decimals=decimals,
        domain_separator=domain_separator,
        permit_type_hash=permit_type_hash,
        version=version,
    )
    logger.info("Fetched permit token %s, domain separator %s", details, domain_separator.hex())
    return details
