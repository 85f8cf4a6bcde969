"""Contract ABI loading.

Turn Forge build artifacts into :py:class:`web3.contract.Contract` classes.
Parsed artifacts are cached, as tests load the same token ABI over and over.
"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Type, Union

from eth_typing import HexAddress
from web3 import Web3
from web3.contract.contract import Contract

_CACHE_SIZE = 64


@lru_cache(maxsize=_CACHE_SIZE)
def get_abi_by_filename(fname: Path) -> dict | list:
    """Read a compiler artifact.

    Example:

    .. code-block:: python

        artifact = get_abi_by_filename(project_folder / "out" / "PermitToken.sol" / "PermitToken.json")
        abi = artifact["abi"]

    :param fname:
        Absolute path of Forge JSON output, or a plain ABI list

    :return:
        Parsed JSON
    """
    fname = Path(fname)
    assert fname.is_absolute(), f"Artifact path must be absolute: {fname}"
    with open(fname, "rt", encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=_CACHE_SIZE)
def get_contract(web3: Web3, fname: Path) -> Type[Contract]:
    """Contract proxy class for an artifact.

    The Web3 connection is a part of the cache key.

    :param fname:
        Forge artifact, or a bare ABI list without bytecode

    :return:
        Contract class you can deploy or bind to an address
    """
    artifact = get_abi_by_filename(fname)

    if isinstance(artifact, list):
        return web3.eth.contract(abi=artifact)

    bytecode = artifact.get("bytecode")

    # Forge nests the hex under bytecode.object
    if isinstance(bytecode, dict):
        bytecode = bytecode["object"]

    return web3.eth.contract(abi=artifact["abi"], bytecode=bytecode)


def get_deployed_contract(
    web3: Web3,
    fname: Path,
    address: Union[HexAddress, str],
) -> Contract:
    """Bind an artifact ABI to an address.

    No check is made that the code at the address matches the ABI.

    :return:
        `web3.contract.Contract` instance
    """
    assert isinstance(web3, Web3), f"Expected Web3, got {type(web3)}"
    assert address, "Contract address missing"
    return get_contract(web3, fname)(Web3.to_checksum_address(address))
