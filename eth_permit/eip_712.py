"""EIP-712 typed structured data hashing.

- Generic encoder for `eth_signTypedData_v4` style typed data

- Used as an independent route to the permit digest in :py:mod:`eth_permit.eip_2612`:
  the same permit can be hashed from explicit ABI words or from a typed data document,
  and both must agree

- `EIP-712 specification <https://eips.ethereum.org/EIPS/eip-712>`__

- Based on Gnosis utilities and the JavaScript `eth-sig-util` package

Example:

.. code-block:: python

    data = construct_eip_2612_permit_message(
        chain_id=web3.eth.chain_id,
        token_address=token.address,
        token_name=token.name,
        owner=owner.address,
        spender=spender,
        value=500 * 10**18,
        nonce=token.fetch_nonce(owner.address),
        deadline=deadline,
    )
    digest = eip712_encode_hash(data)

Past copyright:

.. code-block:: text

    Copyright (C) 2022 Judd Vinet <jvinet@zeroflux.org>
                       Uxío Fuentefría <uxio@safe.global>

    Permission is hereby granted, free of charge, to any person obtaining a copy of
    this software and associated documentation files (the "Software"), to deal in
    the Software without restriction, including without limitation the rights to
    use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies
    of the Software, and to permit persons to whom the Software is furnished to do
    so, subject to the following conditions:

    The above copyright notice and this permission notice shall be included in all
    copies or substantial portions of the Software.

    THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
    IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
    FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
    AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
    LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
    OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
    SOFTWARE.
"""

import re
from typing import Any, Dict, List, Union

from eth_abi import encode as encode_abi
from eth_account import Account
from eth_typing import Hash32, HexStr
from hexbytes import HexBytes
from web3 import Web3

from eth_permit.compat import sign_hash_compat

#: Type definitions as they appear in the `types` section of typed data
TypeDefinitions = Dict[str, List[Dict[str, str]]]

#: Hash placed for a missing nested struct value
EMPTY_STRUCT_HASH = b"\x00" * 32


def fast_keccak(value: bytes) -> bytes:
    return Web3.keccak(value)


def find_type_dependencies(primary_type: str, types: TypeDefinitions, results: list | None = None) -> list[str]:
    """Collect struct types referenced by `primary_type`, including itself.

    Array suffixes like `Person[]` are stripped before the lookup.
    """
    if results is None:
        results = []

    primary_type = re.split(r"\W", primary_type)[0]
    if primary_type in results or not types.get(primary_type):
        return results
    results.append(primary_type)

    for field in types[primary_type]:
        find_type_dependencies(field["type"], types, results)

    return results


def encode_type(primary_type: str, types: TypeDefinitions) -> str:
    """Encode a struct schema string.

    The primary type comes first, referenced struct types follow in alphabetical order.

    .. code-block:: text

        Permit(address owner,address spender,uint256 value,uint256 nonce,uint256 deadline)
    """
    deps = find_type_dependencies(primary_type, types)
    deps = [primary_type] + sorted(d for d in deps if d != primary_type)

    result = ""
    for typ in deps:
        children = types.get(typ)
        if not children:
            raise ValueError(f"No type definition specified: {typ}")
        defs = ",".join(f"{t['type']} {t['name']}" for t in children)
        result += f"{typ}({defs})"
    return result


def hash_type(primary_type: str, types: TypeDefinitions) -> Hash32:
    """Typehash of a struct, e.g. `PERMIT_TYPEHASH`."""
    return fast_keccak(encode_type(primary_type, types).encode("utf-8"))


def _encode_field(name: str, typ: str, value: Any, types: TypeDefinitions) -> tuple[str, Any]:
    """Map one struct member to an ABI `(type, value)` pair.

    Dynamic values and nested structs are replaced by their hashes.
    """
    if typ in types:
        if value is None:
            return "bytes32", EMPTY_STRUCT_HASH
        return "bytes32", fast_keccak(encode_data(typ, value, types))

    if value is None:
        raise ValueError(f"Missing value for field {name} of type {typ}")

    # Accept hex string bytes
    if "bytes" in typ and isinstance(value, str):
        value = HexBytes(value)

    # Accept string uint and int
    if "int" in typ and isinstance(value, str):
        value = int(value, 0)

    if typ == "bytes":
        return "bytes32", fast_keccak(value)

    if typ == "string":
        if not isinstance(value, str):
            raise ValueError(f"Could not encode field {name}: expected string, got {type(value)}")
        return "bytes32", fast_keccak(value.encode("utf-8"))

    if typ.endswith("]"):
        item_type = typ[: typ.rindex("[")]
        pairs = [_encode_field(name, item_type, v, types) for v in value]
        item_types = [p[0] for p in pairs]
        item_values = [p[1] for p in pairs]
        return "bytes32", fast_keccak(encode_abi(item_types, item_values))

    return typ, value


def encode_data(primary_type: str, data: dict, types: TypeDefinitions) -> bytes:
    """ABI encode a struct instance as typehash followed by its member words."""
    encoded_types = ["bytes32"]
    encoded_values = [hash_type(primary_type, types)]

    for field in types[primary_type]:
        typ, val = _encode_field(field["name"], field["type"], data.get(field["name"]), types)
        encoded_types.append(typ)
        encoded_values.append(val)

    return encode_abi(encoded_types, encoded_values)


def hash_struct(primary_type: str, data: dict, types: TypeDefinitions) -> Hash32:
    return fast_keccak(encode_data(primary_type, data, types))


def eip712_encode(typed_data: Dict[str, Any]) -> List[bytes]:
    """Split typed data into the signable parts.

      0: The magic & version (0x1901)
      1: The domain separator
      2: The struct hash of the message, omitted when the primary type is `EIP712Domain`

    :raise ValueError:
        If the typed data document is malformed
    """
    try:
        parts = [
            bytes.fromhex("1901"),
            hash_struct("EIP712Domain", typed_data["domain"], typed_data["types"]),
        ]
        if typed_data["primaryType"] != "EIP712Domain":
            parts.append(
                hash_struct(
                    typed_data["primaryType"],
                    typed_data["message"],
                    typed_data["types"],
                )
            )
        return parts
    except (KeyError, AttributeError, TypeError, IndexError) as exc:
        raise ValueError(f"Not valid typed data: {typed_data}") from exc


def eip712_encode_hash(typed_data: Dict[str, Any]) -> Hash32:
    """
    :param typed_data: EIP-712 structured data and types
    :return: Keccak256 hash of encoded signable data
    """
    return fast_keccak(b"".join(eip712_encode(typed_data)))


def eip712_signature(payload: Union[bytes, list, tuple], private_key: Union[HexStr, bytes]) -> bytes:
    """Sign encoded EIP-712 parts with a private key.

    :param payload:
        Output of :py:func:`eip712_encode` or the joined bytes

    :return:
        65 bytes `r ‖ s ‖ v` signature
    """
    if isinstance(payload, (list, tuple)):
        payload = b"".join(payload)

    account = Account.from_key(private_key)
    signed_message = sign_hash_compat(account, fast_keccak(payload))
    return signed_message.signature
