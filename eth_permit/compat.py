# compat.py
"""
web3.py v6/v7 compatibility module.

- eth_account renamed hash signing and raw transaction attributes
  between the releases shipped with web3.py 6 and 7
"""

import warnings
from importlib.metadata import version

from eth_account.datastructures import SignedMessage
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from packaging.version import Version

pkg_version = version("web3")
WEB3_PY_V7 = Version(pkg_version) >= Version("7.0.0")


def sign_hash_compat(account: LocalAccount, message_hash: bytes) -> SignedMessage:
    """Sign a raw 32-byte hash with a local account.

    - `signHash()` was renamed to `unsafe_sign_hash()` in eth_account 0.13

    - EIP-712 digests are already domain separated, so signing the raw hash
      is what the verifying contract expects

    :param account:
        Local private key account

    :param message_hash:
        32 bytes digest

    :return:
        eth_account signed message with `v`, `r`, `s` and `signature`
    """
    assert isinstance(account, LocalAccount), f"Got {type(account)}"
    assert len(message_hash) == 32, f"Expected 32 bytes hash, got {len(message_hash)} bytes"

    if WEB3_PY_V7:
        return account.unsafe_sign_hash(message_hash)

    # Mute DeprecationWarning on older eth_account
    with warnings.catch_warnings():
        warnings.filterwarnings(action="ignore", category=DeprecationWarning)
        return account.signHash(message_hash)


def get_tx_broadcast_data(signed_tx) -> HexBytes:
    """Get raw transaction bytes with compatibility for attribute name changes.

    eth_account changed `rawTransaction` to `raw_transaction` in newer versions.

    :raise AttributeError:
        If the signed transaction object has neither attribute
    """
    if hasattr(signed_tx, "raw_transaction"):
        return signed_tx.raw_transaction
    elif hasattr(signed_tx, "rawTransaction"):
        return signed_tx.rawTransaction
    else:
        raise AttributeError(f"SignedTransaction object has neither 'raw_transaction' nor 'rawTransaction' attribute. Available attributes: {dir(signed_tx)}")

