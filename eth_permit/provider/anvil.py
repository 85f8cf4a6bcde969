"""Anvil test node.

Start and stop a local `Anvil <https://book.getfoundry.sh/reference/anvil/>`__ node
from Python, and drive its clock.

- Permit tokens check `deadline` against `block.timestamp`,
  so tests need to move the chain time at will

- Anvil mines a block per transaction, reverted transactions included,
  which lets us read revert reasons of failed permits

To install Anvil:

.. code-block:: shell

    curl -L https://foundry.paradigm.xyz | bash
    PATH=~/.foundry/bin:$PATH
    foundryup
"""

import logging
import os
import shutil
import sys
import time
import warnings
from dataclasses import dataclass
from subprocess import DEVNULL, PIPE
from typing import Any, Optional

import psutil
import requests
from requests.exceptions import ConnectionError as RequestsConnectionError
from web3 import HTTPProvider, Web3

from eth_permit.utils import find_free_port, is_localhost_port_listening, shutdown_hard

logger = logging.getLogger(__name__)


#: Chain id Anvil uses unless told otherwise
ANVIL_CHAIN_ID = 31337


class InvalidArgumentWarning(Warning):
    """launch_anvil() got an option we do not know how to pass to Anvil."""


class RPCRequestError(Exception):
    """Anvil returned an error for a custom RPC method."""


#: Python argument name -> anvil command line switch
CLI_FLAGS = {
    "port": "--port",
    "host": "--host",
    "hardfork": "--hardfork",
    "chain_id": "--chain-id",
    "gas_limit": "--gas-limit",
    "block_time": "--block-time",
    "timestamp": "--timestamp",
    "verbose": "-vvvvv",
}


def _build_command_line(cmd: str, options: dict) -> list[str]:
    cmd_line = cmd.split(" ")
    for name, value in options.items():
        if not value:
            continue

        flag = CLI_FLAGS.get(name)
        if flag is None:
            warnings.warn(f"anvil option {name}={value} not supported, ignoring", InvalidArgumentWarning)
            continue

        if value is True:
            cmd_line.append(flag)
        else:
            cmd_line += [flag, str(value)]
    return cmd_line


def _spawn(cmd_line: list[str]) -> psutil.Popen:
    logger.info("Starting %s", " ".join(cmd_line))
    # Windows pipes fill up and block the node
    out = DEVNULL if sys.platform == "win32" else PIPE
    env = dict(os.environ, RUST_BACKTRACE="1")
    return psutil.Popen(cmd_line, stdin=DEVNULL, stdout=out, stderr=out, env=env)


def make_anvil_custom_rpc_request(web3: Web3, method: str, args: Optional[list] = None) -> Any:
    """Call one of the `evm_*` or `anvil_*` methods.

    Example:

    .. code-block:: python

        make_anvil_custom_rpc_request(web3, "evm_setNextBlockTimestamp", [deadline])

    :raise RPCRequestError:
        Anvil answered with an error, or we are not connected
    """
    params = tuple(args or ())

    try:
        response = web3.provider.make_request(method, params)  # type: ignore
    except (AttributeError, RequestsConnectionError) as e:
        raise RPCRequestError(f"Could not reach the node for {method}") from e

    if "result" in response:
        return response["result"]

    raise RPCRequestError(f"{method} failed: {response['error']['message']}")


@dataclass
class AnvilLaunch:
    """A running Anvil process.

    Call :py:meth:`close` when done, otherwise the process outlives the tests.
    """

    #: Localhost port of JSON-RPC
    port: int

    #: The command line the process was started with
    cmd: list[str]

    #: `http://localhost:{port}`
    json_rpc_url: str

    #: The background process
    process: psutil.Popen

    def close(self, log_level: Optional[int] = None, block=True, block_timeout=30) -> tuple[bytes, bytes]:
        """Kill Anvil.

        :param log_level:
            Write what Anvil printed to our logs at this level

        :param block:
            Wait until the port is released

        :return:
            Anvil stdout and stderr
        """
        stdout, stderr = shutdown_hard(self.process, log_level=log_level, block=block, block_timeout=block_timeout, check_port=self.port)
        logger.info("Anvil at %s closed", self.json_rpc_url)
        return stdout, stderr


def _wait_until_ready(web3: Web3, timeout: float, log_wait: bool) -> tuple[int, int] | None:
    """Poll the fresh node until it answers.

    :return:
        (block number, chain id) or None on timeout
    """
    deadline = time.time() + timeout
    while time.time() < deadline:
        try:
            return web3.eth.block_number, web3.eth.chain_id
        except (requests.exceptions.ConnectionError, requests.exceptions.ReadTimeout) as e:
            if log_wait:
                logger.info("Waiting for Anvil: %s", e)
            time.sleep(0.1)
    return None


def launch_anvil(
    cmd="anvil",
    port: int | tuple = (19999, 29999, 25),
    chain_id: int | None = None,
    block_time=0,
    launch_wait_seconds=20.0,
    attempts=3,
    hardfork: str | None = "cancun",
    gas_limit: Optional[int] = None,
    timestamp: Optional[int] = None,
    test_request_timeout=3.0,
    log_wait=False,
    verbose=False,
) -> AnvilLaunch:
    """Start Anvil on the background for tests.

    Example:

    .. code-block:: python

        @pytest.fixture(scope="module")
        def anvil() -> AnvilLaunch:
            anvil = launch_anvil()
            try:
                yield anvil
            finally:
                anvil.close()

    A leftover process can be killed by its port:

    .. code-block:: shell

        kill -SIGKILL $(lsof -ti:19999)

    :param cmd:
        Anvil executable, looked up from `PATH`

    :param port:
        Fixed port, or `(min port, max port, attempts)` to pick a random free one.
        Random ports let `pytest -n auto` run several nodes side by side.

    :param chain_id:
        Chain id other than :py:data:`ANVIL_CHAIN_ID`.
        Domain separators commit to the chain id.

    :param block_time:
        Seconds between blocks. Zero mines a block for every transaction.

    :param launch_wait_seconds:
        How long one start attempt may take

    :param attempts:
        Restart this many times if Anvil dies silently

    :param hardfork:
        EVM version

    :param gas_limit:
        Block gas limit

    :param timestamp:
        Genesis block timestamp

    :param test_request_timeout:
        Read timeout of the readiness polls

    :param log_wait:
        Log every failed readiness poll

    :param verbose:
        Run Anvil with full tracing output
    """
    assert shutil.which(cmd) is not None, f"{cmd} not found in PATH {os.environ.get('PATH')}"

    if isinstance(port, tuple):
        port = find_free_port(*port)
    else:
        assert not is_localhost_port_listening(port), f"Port {port} is taken, maybe by a zombie Anvil.\nkill -SIGKILL $(lsof -ti:{port})"

    if block_time:
        assert block_time > 0, f"Bad block time {block_time}"

    assert attempts > 0, f"Bad attempts {attempts}"

    url = f"http://localhost:{port}"
    cmd_line = _build_command_line(
        cmd,
        dict(
            port=port,
            hardfork=hardfork,
            chain_id=chain_id,
            gas_limit=gas_limit,
            block_time=block_time,
            timestamp=timestamp,
            verbose=verbose,
        ),
    )
    web3 = Web3(HTTPProvider(url, request_kwargs={"timeout": test_request_timeout}))

    for attempt in range(1, attempts + 1):
        process = _spawn(cmd_line)
        ready = _wait_until_ready(web3, launch_wait_seconds, log_wait)
        if ready is not None:
            block_number, launched_chain_id = ready
            logger.info("Anvil running at %s, chain %d, block %d", url, launched_chain_id, block_number)
            return AnvilLaunch(port, cmd_line, url, process)

        logger.error("Anvil at %s did not answer in %f seconds", url, launch_wait_seconds)
        stdout, stderr = shutdown_hard(process, log_level=logging.ERROR, block=True, check_port=port)

        # Output means Anvil ran and failed, no point retrying
        if stdout:
            break

        logger.info("Anvil start attempt %d/%d failed silently", attempt, attempts)

    raise AssertionError(f"Could not start Anvil with '{' '.join(cmd_line)}' at {url}, stdout {len(stdout)} bytes, stderr {len(stderr)} bytes")


def sleep(web3: Web3, seconds: int) -> int:
    """Push the timestamp of the next mined block forward.

    :return:
        `seconds`
    """
    make_anvil_custom_rpc_request(web3, "evm_increaseTime", [hex(seconds)])
    return seconds


def mine(web3: Web3, timestamp: Optional[int] = None, increase_timestamp: float = 0) -> None:
    """Mine one block.

    Example:

    .. code-block:: python

        # Let a permit expire
        mine(web3, increase_timestamp=deadline_seconds + 1)

    :param timestamp:
        Absolute timestamp of the new block

    :param increase_timestamp:
        Seconds to add to the latest block timestamp
    """
    if increase_timestamp > 0:
        latest = web3.eth.get_block("latest")
        make_anvil_custom_rpc_request(web3, "evm_setNextBlockTimestamp", [int(latest["timestamp"] + increase_timestamp)])
        make_anvil_custom_rpc_request(web3, "evm_mine")
    elif timestamp is not None:
        make_anvil_custom_rpc_request(web3, "evm_mine", [timestamp])
    else:
        make_anvil_custom_rpc_request(web3, "evm_mine")


def snapshot(web3: Web3) -> int:
    """Save the chain state.

    :return:
        Id for :py:func:`revert`
    """
    return int(make_anvil_custom_rpc_request(web3, "evm_snapshot"), 16)


def revert(web3: Web3, snapshot_id: int) -> bool:
    """Roll back to a :py:func:`snapshot`.

    :return:
        True if the snapshot existed
    """
    return make_anvil_custom_rpc_request(web3, "evm_revert", [hex(snapshot_id)])


def is_anvil(web3: Web3) -> bool:
    """Is the node on the other end Anvil."""
    # e.g. anvil/v0.2.0
    return "anvil/" in web3.client_version
