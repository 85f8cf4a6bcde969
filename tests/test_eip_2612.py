"""EIP-2612 digest construction without a chain.

Cross-checks against the EIP-712 implementation of eth_account.
"""

import dataclasses
import time

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from web3 import Web3

from eth_permit.eip_2612 import (
    PERMIT_TYPEHASH,
    PermitApproval,
    PermitEncodingError,
    PermitSignature,
    construct_eip_2612_permit_message,
    get_approval_digest,
    get_domain_separator,
    get_permit_type_hash,
    hash_permit_struct,
    now_in_seconds,
    recover_permit_signer,
    sign_approval_digest,
)
from eth_permit.eip_712 import eip712_encode_hash

TOKEN_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
SPENDER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
CHAIN_ID = 31337


@pytest.fixture
def owner() -> LocalAccount:
    return Account.create()


@pytest.fixture
def domain_separator():
    return get_domain_separator(TOKEN_ADDRESS, "Permit Token", "1", CHAIN_ID)


@pytest.fixture
def approve(owner) -> PermitApproval:
    return PermitApproval(owner=owner.address, spender=SPENDER, value=500 * 10**18)


def test_permit_type_hash():
    """Typehash matches the well-known EIP-2612 constant."""
    type_hash = get_permit_type_hash()
    assert type_hash == PERMIT_TYPEHASH
    assert type_hash.hex().removeprefix("0x") == "6e71edae12b1b97f4d1f60370fef10105fa2faae0126114a169c64845d6126c9"
    assert type_hash == Web3.keccak(text="Permit(address owner,address spender,uint256 value,uint256 nonce,uint256 deadline)")


def test_domain_separator_stable(domain_separator):
    """Same inputs, same hash."""
    assert len(domain_separator) == 32
    assert get_domain_separator(TOKEN_ADDRESS, "Permit Token", "1", CHAIN_ID) == domain_separator
    # Address case does not matter
    assert get_domain_separator(TOKEN_ADDRESS.lower(), "Permit Token", "1", CHAIN_ID) == domain_separator


@pytest.mark.parametrize(
    "changed",
    [
        {"verifying_contract": SPENDER},
        {"name": "Permit Token 2"},
        {"version": "2"},
        {"chain_id": 1},
    ],
)
def test_domain_separator_changes_with_any_input(domain_separator, changed):
    """Each domain input is bound into the hash."""
    kwargs = dict(verifying_contract=TOKEN_ADDRESS, name="Permit Token", version="1", chain_id=CHAIN_ID)
    kwargs.update(changed)
    assert get_domain_separator(**kwargs) != domain_separator


def test_approval_digest_matches_eth_account(domain_separator, approve):
    """Our two-stage hash agrees with eth_account typed data hashing."""
    nonce = 3
    deadline = 1_900_000_000

    digest = get_approval_digest(domain_separator, get_permit_type_hash(), approve, nonce, deadline)

    data = construct_eip_2612_permit_message(
        chain_id=CHAIN_ID,
        token_address=TOKEN_ADDRESS,
        token_name="Permit Token",
        owner=approve.owner,
        spender=approve.spender,
        value=approve.value,
        nonce=nonce,
        deadline=deadline,
    )
    signable = encode_typed_data(full_message=data)

    # header is the domain separator, body is the struct hash
    assert signable.header == domain_separator
    assert signable.body == hash_permit_struct(PERMIT_TYPEHASH, approve.to_message(nonce, deadline))
    assert Web3.keccak(b"\x19" + signable.version + signable.header + signable.body) == digest

    # Our own generic EIP-712 encoder
    assert eip712_encode_hash(data) == digest


@pytest.mark.parametrize("field", ["owner", "spender", "value", "nonce", "deadline"])
def test_approval_digest_changes_with_any_field(domain_separator, approve, field):
    """Every permit field is bound into the digest."""
    message = approve.to_message(nonce=0, deadline=1_900_000_000)
    original = hash_permit_struct(PERMIT_TYPEHASH, message)

    if field in ("owner", "spender"):
        tampered = dataclasses.replace(message, **{field: Account.create().address})
    else:
        tampered = dataclasses.replace(message, **{field: getattr(message, field) + 1})

    assert hash_permit_struct(PERMIT_TYPEHASH, tampered) != original


def test_approval_digest_depends_on_domain_and_type_hash(domain_separator, approve):
    digest = get_approval_digest(domain_separator, PERMIT_TYPEHASH, approve, 0, 1_900_000_000)
    other_domain = get_domain_separator(TOKEN_ADDRESS, "Permit Token", "1", 1)
    assert get_approval_digest(other_domain, PERMIT_TYPEHASH, approve, 0, 1_900_000_000) != digest
    assert get_approval_digest(domain_separator, Web3.keccak(text="Permit()"), approve, 0, 1_900_000_000) != digest


def test_approval_digest_accepts_hex_strings(domain_separator, approve):
    digest = get_approval_digest(domain_separator, PERMIT_TYPEHASH, approve, 0, 1)
    hex_digest = get_approval_digest("0x" + bytes(domain_separator).hex(), "0x" + bytes(PERMIT_TYPEHASH).hex(), approve, 0, 1)
    assert hex_digest == digest


def test_sign_and_recover(domain_separator, approve, owner: LocalAccount):
    """Recovering a signature gives back the signing address."""
    digest = get_approval_digest(domain_separator, PERMIT_TYPEHASH, approve, 0, now_in_seconds(3600))
    signature = sign_approval_digest(digest, owner)

    assert isinstance(signature, PermitSignature)
    assert signature.v in (27, 28)
    assert len(signature.r) == 32
    assert len(signature.s) == 32
    assert len(signature.signature) == 65
    assert signature.digest == digest
    assert recover_permit_signer(digest, signature) == owner.address


def test_sign_with_raw_key(domain_separator, approve, owner: LocalAccount):
    """Hex keys, raw keys and accounts give the same deterministic signature."""
    digest = get_approval_digest(domain_separator, PERMIT_TYPEHASH, approve, 0, 1_900_000_000)
    by_account = sign_approval_digest(digest, owner)
    by_bytes = sign_approval_digest(digest, owner.key)
    by_hex = sign_approval_digest(digest, "0x" + bytes(owner.key).hex())
    assert by_account == by_bytes == by_hex


def test_recover_wrong_signer(domain_separator, approve):
    """Signing with somebody else's key recovers somebody else."""
    digest = get_approval_digest(domain_separator, PERMIT_TYPEHASH, approve, 0, 1_900_000_000)
    attacker = Account.create()
    signature = sign_approval_digest(digest, attacker)
    assert recover_permit_signer(digest, signature) == attacker.address
    assert recover_permit_signer(digest, signature) != approve.owner


@pytest.mark.parametrize(
    "kwargs",
    [
        {"verifying_contract": "0xnot-an-address"},
        {"verifying_contract": "0x5fbDB2315678afecb367f032d93F642f64180aa3"},  # Bad checksum
        {"chain_id": -1},
        {"chain_id": "1"},
        {"name": None},
    ],
)
def test_domain_separator_malformed(kwargs):
    args = dict(verifying_contract=TOKEN_ADDRESS, name="Permit Token", version="1", chain_id=CHAIN_ID)
    args.update(kwargs)
    with pytest.raises(PermitEncodingError):
        get_domain_separator(**args)


def test_address_checksum_enforced(domain_separator, approve):
    """Single case addresses are accepted, mixed case must carry a valid EIP-55 checksum."""
    upper = "0x" + TOKEN_ADDRESS[2:].upper()
    assert get_domain_separator(upper, "Permit Token", "1", CHAIN_ID) == domain_separator

    bad_checksum = PermitApproval(owner=approve.owner, spender="0x70997970c51812dc3A010C7d01b50e0d17dc79C8", value=1)
    with pytest.raises(PermitEncodingError):
        get_approval_digest(domain_separator, PERMIT_TYPEHASH, bad_checksum, 0, 1)

    with pytest.raises(PermitEncodingError):
        get_domain_separator("0x5fbDB2315678afecb367f032d93F642f64180aa3", "Permit Token", "1", CHAIN_ID)


@pytest.mark.parametrize(
    "approve, nonce, deadline",
    [
        (PermitApproval(owner="0x1234", spender=SPENDER, value=1), 0, 1),
        (PermitApproval(owner=SPENDER, spender=SPENDER, value=-1), 0, 1),
        (PermitApproval(owner=SPENDER, spender=SPENDER, value=2**256), 0, 1),
        (PermitApproval(owner=SPENDER, spender=SPENDER, value=True), 0, 1),
        (PermitApproval(owner=SPENDER, spender=SPENDER, value=1), 0, 1.5),
    ],
)
def test_approval_digest_malformed(domain_separator, approve, nonce, deadline):
    with pytest.raises(PermitEncodingError):
        get_approval_digest(domain_separator, PERMIT_TYPEHASH, approve, nonce, deadline)


def test_approval_digest_bad_hash_length(approve):
    with pytest.raises(PermitEncodingError):
        get_approval_digest(b"\x00" * 31, PERMIT_TYPEHASH, approve, 0, 1)

    # PermitEncodingError is a ValueError
    with pytest.raises(ValueError):
        get_approval_digest(b"\x00" * 32, "0x1234", approve, 0, 1)


def test_now_in_seconds():
    now = time.time()
    assert abs(now_in_seconds() - now) <= 1
    assert abs(now_in_seconds(3600) - (now + 3600)) <= 1
