"""EIP-2612 permit() support for Python.

- Compute the EIP-712 domain separator, the permit typehash and the approval digest
  exactly as a permit token contract computes them on-chain

- Sign the digest with a local private key and expand the signature
  to `permit(owner, spender, value, deadline, v, r, s)` arguments

- `EIP-2612 spec <https://eips.ethereum.org/EIPS/eip-2612>`__

The contract side computation this module mirrors:

.. code-block:: text

    DOMAIN_SEPARATOR = keccak256(
        abi.encode(
            keccak256("EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"),
            keccak256(bytes(name)),
            keccak256(bytes(version)),
            chainId,
            address(this)
        )
    );

    digest = keccak256(
        abi.encodePacked(
            "\\x19\\x01",
            DOMAIN_SEPARATOR,
            keccak256(abi.encode(PERMIT_TYPEHASH, owner, spender, value, nonce, deadline))
        )
    );

A single padding or byte order deviation gives a digest that never validates,
so every value goes through the standard ABI encoder of `eth_abi`.

Example:

.. code-block:: python

    domain_separator = get_domain_separator(token.address, "Permit Token", "1", web3.eth.chain_id)
    digest = get_approval_digest(
        domain_separator,
        get_permit_type_hash(),
        PermitApproval(owner=owner.address, spender=spender, value=500 * 10**18),
        nonce=token.fetch_nonce(owner.address),
        deadline=now_in_seconds(3600),
    )
    signature = sign_approval_digest(digest, owner)

For the same message as EIP-712 typed data see :py:func:`construct_eip_2612_permit_message`
and :py:mod:`eth_permit.eip_712`.
"""

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

from eth_abi import encode as encode_abi
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_typing import ChecksumAddress, HexAddress, HexStr
from eth_utils import is_address, is_checksum_address, to_checksum_address
from hexbytes import HexBytes
from web3 import Web3
from web3.contract.contract import ContractFunction

from eth_permit.compat import sign_hash_compat

if TYPE_CHECKING:
    from eth_permit.token import PermitTokenDetails


logger = logging.getLogger(__name__)


#: Domain schema used by permit tokens.
#:
#: Note that some tokens, e.g. Polygon bridged tokens, use a salt based domain instead.
EIP712_DOMAIN_TYPE = "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"

#: Permit struct schema
PERMIT_TYPE = "Permit(address owner,address spender,uint256 value,uint256 nonce,uint256 deadline)"

#: keccak256(PERMIT_TYPE)
PERMIT_TYPEHASH = HexBytes("0x6e71edae12b1b97f4d1f60370fef10105fa2faae0126114a169c64845d6126c9")

#: EIP-191 prefix and EIP-712 version byte
EIP712_PREFIX = b"\x19\x01"

UINT256_MAX = 2**256 - 1


class PermitEncodingError(ValueError):
    """Permit input cannot be ABI encoded.

    Raised for malformed addresses, hashes that are not 32 bytes
    and integers that do not fit `uint256`.
    """


@dataclass(frozen=True, slots=True)
class PermitMessage:
    """All values a permit signer authorises."""

    owner: HexAddress
    spender: HexAddress
    value: int
    nonce: int
    deadline: int

    def as_dict(self) -> dict:
        """EIP-712 message in the struct field order."""
        return {
            "owner": self.owner,
            "spender": self.spender,
            "value": self.value,
            "nonce": self.nonce,
            "deadline": self.deadline,
        }


@dataclass(frozen=True, slots=True)
class PermitApproval:
    """The approval a permit grants, before nonce and deadline are attached."""

    #: Token holder whose key signs the permit
    owner: HexAddress

    #: Who gets the allowance
    spender: HexAddress

    #: Allowance in raw token units
    value: int

    def to_message(self, nonce: int, deadline: int) -> PermitMessage:
        return PermitMessage(self.owner, self.spender, self.value, nonce, deadline)


@dataclass(frozen=True, slots=True)
class PermitSignature:
    """Recoverable secp256k1 signature over an approval digest."""

    #: 27 or 28
    v: int

    #: 32 bytes
    r: bytes

    #: 32 bytes
    s: bytes

    #: The digest that was signed
    digest: bytes

    @property
    def signature(self) -> bytes:
        """65 bytes `r ‖ s ‖ v` packed signature."""
        return self.r + self.s + bytes([self.v])

    def as_permit_args(self) -> tuple[int, bytes, bytes]:
        """Trailing `(v, r, s)` arguments of `permit()`."""
        return self.v, self.r, self.s


def _check_address(name: str, value) -> ChecksumAddress:
    if not isinstance(value, str) or not is_address(value):
        raise PermitEncodingError(f"{name} is not a valid address: {value!r}")
    # Newer eth_utils is_address() no longer verifies EIP-55 checksums
    single_case = value in (value.lower(), "0x" + value[2:].upper())
    if not single_case and not is_checksum_address(value):
        raise PermitEncodingError(f"{name} has a bad EIP-55 checksum: {value!r}")
    return to_checksum_address(value)


def _check_uint256(name: str, value) -> int:
    # bool is an int subclass, but never a meaningful amount
    if type(value) != int:
        raise PermitEncodingError(f"{name} must be int, got {type(value)}: {value!r}")
    if not 0 <= value <= UINT256_MAX:
        raise PermitEncodingError(f"{name} does not fit uint256: {value}")
    return value


def _check_hash32(name: str, value: Union[bytes, HexStr]) -> HexBytes:
    try:
        value = HexBytes(value)
    except (TypeError, ValueError) as e:
        raise PermitEncodingError(f"{name} is not a hash: {value!r}") from e
    if len(value) != 32:
        raise PermitEncodingError(f"{name} must be 32 bytes, got {len(value)} bytes")
    return value


def get_domain_separator(
    verifying_contract: HexAddress | str,
    name: str,
    version: str,
    chain_id: int,
) -> HexBytes:
    """Compute the EIP-712 domain separator of a token.

    Pure function of its inputs. Compare against on-chain `DOMAIN_SEPARATOR()`.

    :param verifying_contract:
        Token contract address

    :param name:
        Token `name()`

    :param version:
        EIP-712 domain version, usually `"1"`

    :param chain_id:
        EVM chain id the token lives on

    :raise PermitEncodingError:
        Malformed address or chain id
    """
    verifying_contract = _check_address("verifying_contract", verifying_contract)
    chain_id = _check_uint256("chain_id", chain_id)
    if not isinstance(name, str) or not isinstance(version, str):
        raise PermitEncodingError(f"name and version must be strings, got {name!r}, {version!r}")

    encoded = encode_abi(
        ["bytes32", "bytes32", "bytes32", "uint256", "address"],
        [
            Web3.keccak(text=EIP712_DOMAIN_TYPE),
            Web3.keccak(text=name),
            Web3.keccak(text=version),
            chain_id,
            verifying_contract,
        ],
    )
    return HexBytes(Web3.keccak(encoded))


def get_permit_type_hash() -> HexBytes:
    """keccak256 of the `Permit(...)` struct schema.

    Compare against on-chain `PERMIT_TYPEHASH()`.
    """
    return HexBytes(Web3.keccak(text=PERMIT_TYPE))


def hash_permit_struct(permit_type_hash: bytes | HexStr, message: PermitMessage) -> HexBytes:
    """First stage hash: the EIP-712 struct hash of a permit message.

    Each field takes one 32 byte ABI word: addresses are left padded,
    integers are big endian.
    """
    permit_type_hash = _check_hash32("permit_type_hash", permit_type_hash)
    encoded = encode_abi(
        ["bytes32", "address", "address", "uint256", "uint256", "uint256"],
        [
            permit_type_hash,
            _check_address("owner", message.owner),
            _check_address("spender", message.spender),
            _check_uint256("value", message.value),
            _check_uint256("nonce", message.nonce),
            _check_uint256("deadline", message.deadline),
        ],
    )
    return HexBytes(Web3.keccak(encoded))


def get_approval_digest(
    domain_separator: bytes | HexStr,
    permit_type_hash: bytes | HexStr,
    approve: PermitApproval,
    nonce: int,
    deadline: int,
) -> HexBytes:
    """Compute the digest a permit owner signs.

    `keccak256(0x19 ‖ 0x01 ‖ domain_separator ‖ hash_permit_struct(...))`

    :param domain_separator:
        See :py:func:`get_domain_separator`

    :param permit_type_hash:
        See :py:func:`get_permit_type_hash`.
        Taken as an argument so tests can pass a wrong one.

    :param approve:
        Owner, spender and allowance

    :param nonce:
        Owner's current `nonces(owner)` value

    :param deadline:
        UNIX timestamp after which the permit expires

    :raise PermitEncodingError:
        Any input that cannot be encoded
    """
    domain_separator = _check_hash32("domain_separator", domain_separator)
    struct_hash = hash_permit_struct(permit_type_hash, approve.to_message(nonce, deadline))
    digest = HexBytes(Web3.keccak(EIP712_PREFIX + domain_separator + struct_hash))
    logger.debug("Permit digest %s for %s, nonce %d, deadline %d", digest.hex(), approve, nonce, deadline)
    return digest


def sign_approval_digest(
    digest: bytes | HexStr,
    private_key: LocalAccount | HexStr | bytes,
) -> PermitSignature:
    """Sign an approval digest.

    Delegates to the secp256k1 implementation of `eth_account`.

    :param private_key:
        Local account, 32 bytes raw key or `0x` prefixed hex key
    """
    digest = _check_hash32("digest", digest)

    if isinstance(private_key, LocalAccount):
        account = private_key
    else:
        account = Account.from_key(private_key)

    signed = sign_hash_compat(account, bytes(digest))
    return PermitSignature(
        v=signed.v,
        r=signed.r.to_bytes(32, "big"),
        s=signed.s.to_bytes(32, "big"),
        digest=bytes(digest),
    )


def recover_permit_signer(digest: bytes | HexStr, signature: PermitSignature) -> ChecksumAddress:
    """Recover the address that produced a signature.

    This is what `ecrecover` does inside `permit()`.
    """
    digest = _check_hash32("digest", digest)
    return Account._recover_hash(bytes(digest), vrs=signature.as_permit_args())


def now_in_seconds(added_seconds: int = 0) -> int:
    """Wall clock UNIX time plus an offset.

    Use block timestamps instead when the chain time has been moved.
    """
    return round(time.time()) + added_seconds


def construct_eip_2612_permit_message(
    chain_id: int,
    token_address: HexAddress | str,
    token_name: str,
    owner: HexAddress | str,
    spender: HexAddress | str,
    value: int,
    nonce: int,
    deadline: int,
    version: str = "1",
) -> dict:
    """Create EIP-712 typed data for an EIP-2612 permit.

    - Hash with :py:func:`eth_permit.eip_712.eip712_encode_hash`

    - Also accepted by `eth_account.messages.encode_typed_data(full_message=...)`

    :return:
        JSON message for EIP-712 signing.
    """
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "Permit": [
                {"name": "owner", "type": "address"},
                {"name": "spender", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "nonce", "type": "uint256"},
                {"name": "deadline", "type": "uint256"},
            ],
        },
        "domain": {
            "name": token_name,
            "version": version,
            "chainId": chain_id,
            "verifyingContract": token_address,
        },
        "primaryType": "Permit",
        "message": PermitMessage(owner, spender, value, nonce, deadline).as_dict(),
    }


def make_eip_2612_permit(
    token: "PermitTokenDetails",
    owner: LocalAccount,
    spender: HexAddress | str,
    value: int,
    deadline: int,
    nonce: int | None = None,
    func: ContractFunction | None = None,
) -> ContractFunction:
    """Sign a permit and bind it to a `permit()` call.

    - Reads the owner nonce from the chain unless given

    - Uses the on-chain `DOMAIN_SEPARATOR` and `PERMIT_TYPEHASH`,
      so the signature is valid for this exact deployment

    - Anyone can then broadcast the returned call, the owner does not need gas

    Example:

    .. code-block:: python

        bound_func = make_eip_2612_permit(
            token,
            owner=user,
            spender=vault.address,
            value=500 * 10**18,
            deadline=block["timestamp"] + 3600,
        )
        tx_hash = bound_func.transact({"from": relayer, "gas": 200_000})
        assert_transaction_success_with_explanation(web3, tx_hash)

    :param token:
        Permit token details

    :param owner:
        The local account that signs the permit.

    :param func:
        Contract function with the `permit()` call signature.
        Defaults to the token's own `permit`.

    :return:
        Bound contract function ready to be transacted
    """
    assert isinstance(owner, LocalAccount), f"Only LocalAccount signing supported, got {type(owner)}"

    if nonce is None:
        nonce = token.fetch_nonce(owner.address)

    if func is None:
        func = token.contract.functions.permit

    spender = _check_address("spender", spender)
    approve = PermitApproval(owner=owner.address, spender=spender, value=value)
    digest = get_approval_digest(token.domain_separator, token.permit_type_hash, approve, nonce, deadline)
    signature = sign_approval_digest(digest, owner)

    logger.info("Signed permit for %s: owner %s, spender %s, value %d, nonce %d, deadline %d", token.symbol, owner.address, spender, value, nonce, deadline)

    return func(owner.address, spender, value, deadline, *signature.as_permit_args())
