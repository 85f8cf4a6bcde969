"""Sign an EIP-2612 permit for a token on a live chain.

- Reads the token EIP-712 domain and the owner nonce from the chain

- Loads the token ABI from `TOKEN_ABI` file, or compiles the bundled `PermitToken` with Foundry forge

- Prints `(v, r, s)` so anybody can relay `permit()`

- With `BROADCAST=true` sends the `permit()` transaction, paying gas with the same key

Example:

.. code-block:: shell

    export JSON_RPC_URL=http://localhost:8545
    export PRIVATE_KEY=0x...
    export TOKEN_ADDRESS=0x...
    export SPENDER=0x...
    export AMOUNT=500
    # Optional, otherwise the bundled PermitToken is compiled with forge
    export TOKEN_ABI=abi/MyToken.json
    python scripts/sign-permit.py

"""

import logging
import os
from decimal import Decimal
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import HTTPProvider, Web3

from eth_permit.compat import get_tx_broadcast_data
from eth_permit.deployment import compile_permit_token
from eth_permit.eip_2612 import make_eip_2612_permit
from eth_permit.token import fetch_permit_token_details
from eth_permit.trace import assert_transaction_success_with_explanation
from eth_permit.utils import setup_console_logging

setup_console_logging(default_log_level="info")
logger = logging.getLogger(__name__)

# Connect to JSON-RPC node
json_rpc_url = os.environ["JSON_RPC_URL"]
web3 = Web3(HTTPProvider(json_rpc_url))
logger.info("Connected to blockchain, chain id is %d, the latest block is %d", web3.eth.chain_id, web3.eth.block_number)

# Read and setup a local private key
private_key = os.environ.get("PRIVATE_KEY")
assert private_key is not None, "You must set PRIVATE_KEY environment variable"
assert private_key.startswith("0x"), "Private key must start with 0x hex prefix"
owner: LocalAccount = Account.from_key(private_key)

token_address = os.environ["TOKEN_ADDRESS"]
spender = Web3.to_checksum_address(os.environ["SPENDER"])
deadline_seconds = int(os.environ.get("DEADLINE_SECONDS", "3600"))
broadcast = os.environ.get("BROADCAST", "false").lower() == "true"

# Any ABI with the permit extension works, the bundled token needs forge to compile
token_abi = os.environ.get("TOKEN_ABI")
if token_abi:
    artifact = Path(token_abi).resolve()
else:
    artifact = compile_permit_token()

token = fetch_permit_token_details(web3, token_address, artifact)

# Human readable amount to raw units
raw_amount = token.convert_to_raw(Decimal(os.environ["AMOUNT"]))

calculated = token.calculate_domain_separator()
if calculated != token.domain_separator:
    logger.warning("Token %s uses a non-standard domain, on-chain %s, calculated %s", token.symbol, token.domain_separator.hex(), calculated.hex())

deadline = web3.eth.get_block("latest")["timestamp"] + deadline_seconds
bound_func = make_eip_2612_permit(token, owner=owner, spender=spender, value=raw_amount, deadline=deadline)
_, _, _, _, v, r, s = bound_func.args

print(f"Token: {token}")
print(f"Owner: {owner.address}")
print(f"Spender: {spender}")
print(f"Value: {raw_amount} raw units, deadline {deadline}")
print(f"v: {v}")
print(f"r: {r.hex()}")
print(f"s: {s.hex()}")

if not broadcast:
    print("Set BROADCAST=true to send permit() transaction")
    raise SystemExit(0)

tx = bound_func.build_transaction(
    {
        "from": owner.address,
        "nonce": web3.eth.get_transaction_count(owner.address),
        "chainId": web3.eth.chain_id,
        "gas": 200_000,
    }
)
signed_tx = owner.sign_transaction(tx)
tx_hash = web3.eth.send_raw_transaction(get_tx_broadcast_data(signed_tx))
print(f"Broadcasted transaction {tx_hash.hex()}, now waiting for mining")
assert_transaction_success_with_explanation(web3, tx_hash)
print(f"All ok! Allowance is now {token.fetch_allowance(owner.address, spender)}")
