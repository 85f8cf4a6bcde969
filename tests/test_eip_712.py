"""Generic EIP-712 encoder.

Uses the Ether Mail example from the EIP-712 specification as the test vector.
"""

import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data
from hexbytes import HexBytes
from web3 import Web3

from eth_permit.eip_712 import eip712_encode, eip712_encode_hash, eip712_signature, encode_type, hash_struct, hash_type


@pytest.fixture
def mail_typed_data() -> dict:
    """https://github.com/ethereum/EIPs/blob/master/assets/eip-712/Example.js"""
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "Person": [
                {"name": "name", "type": "string"},
                {"name": "wallet", "type": "address"},
            ],
            "Mail": [
                {"name": "from", "type": "Person"},
                {"name": "to", "type": "Person"},
                {"name": "contents", "type": "string"},
            ],
        },
        "primaryType": "Mail",
        "domain": {
            "name": "Ether Mail",
            "version": "1",
            "chainId": 1,
            "verifyingContract": "0xCcCCccccCCCCcCCCCCCcCcCccCcCCCcCcccccccC",
        },
        "message": {
            "from": {"name": "Cow", "wallet": "0xCD2a3d9F938E13CD947Ec05AbC7FE734Df8DD826"},
            "to": {"name": "Bob", "wallet": "0xbBbBBBBbbBBBbbbBbbBbbbbBBbBbbbbBbBbbBBbB"},
            "contents": "Hello, Bob!",
        },
    }


def test_encode_type(mail_typed_data):
    """Referenced structs are appended after the primary type."""
    assert encode_type("Mail", mail_typed_data["types"]) == "Mail(Person from,Person to,string contents)Person(string name,address wallet)"
    assert hash_type("Mail", mail_typed_data["types"]) == HexBytes("0xa0cedeb2dc280ba39b857546d74f5549c3a1d7bdc2dd96bf881f76108e23dac2")


def test_hash_struct(mail_typed_data):
    types = mail_typed_data["types"]
    assert hash_struct("Mail", mail_typed_data["message"], types) == HexBytes("0xc52c0ee5d84264471806290a3f2c4cecfc5490626bf912d01f240d7a274b371e")
    assert hash_struct("EIP712Domain", mail_typed_data["domain"], types) == HexBytes("0xf2cee375fa42b42143804025fc449deafd50cc031ca257e0b194a650a912090f")


def test_encode_hash(mail_typed_data):
    parts = eip712_encode(mail_typed_data)
    assert len(parts) == 3
    assert parts[0] == b"\x19\x01"
    assert eip712_encode_hash(mail_typed_data) == HexBytes("0xbe609aee343fb3c4b28e1df9e632fca64fcfaede20f02e86244efddf30957bd2")


def test_signature_recovers(mail_typed_data):
    """Cow signs the mail with keccak256("cow") key."""
    cow = Account.from_key(Web3.keccak(text="cow"))
    assert cow.address == "0xCD2a3d9F938E13CD947Ec05AbC7FE734Df8DD826"

    signature = eip712_signature(eip712_encode(mail_typed_data), cow.key)
    assert len(signature) == 65

    recovered = Account._recover_hash(eip712_encode_hash(mail_typed_data), signature=signature)
    assert recovered == cow.address


def test_arrays_match_eth_account():
    """Array members hash the same way as in eth_account."""
    data = {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "chainId", "type": "uint256"},
            ],
            "Item": [
                {"name": "label", "type": "string"},
                {"name": "amount", "type": "uint256"},
            ],
            "Basket": [
                {"name": "items", "type": "Item[]"},
                {"name": "tags", "type": "string[]"},
                {"name": "ids", "type": "uint256[]"},
                {"name": "payload", "type": "bytes"},
            ],
        },
        "primaryType": "Basket",
        "domain": {"name": "Basket test", "chainId": 1},
        "message": {
            "items": [{"label": "apple", "amount": 1}, {"label": "pear", "amount": 2}],
            "tags": ["fruit", "fresh"],
            "ids": [7, 8, 9],
            "payload": "0xdeadbeef",
        },
    }
    signable = encode_typed_data(full_message=data)
    expected = Web3.keccak(b"\x19" + signable.version + signable.header + signable.body)
    assert eip712_encode_hash(data) == expected


def test_invalid_typed_data(mail_typed_data):
    del mail_typed_data["domain"]
    with pytest.raises(ValueError):
        eip712_encode_hash(mail_typed_data)


def test_missing_field_value(mail_typed_data):
    del mail_typed_data["message"]["contents"]
    with pytest.raises(ValueError, match="Missing value for field contents"):
        eip712_encode_hash(mail_typed_data)


def test_missing_type_definition(mail_typed_data):
    with pytest.raises(ValueError, match="No type definition"):
        encode_type("Letter", mail_typed_data["types"])
