"""Process, port and logging helpers."""

import logging
import os
import random
import socket
import time
from typing import Optional

import coloredlogs
import psutil

logger = logging.getLogger(__name__)


def is_localhost_port_listening(port: int, host="localhost") -> bool:
    """Does something accept TCP connections on this port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex((host, port)) == 0


def find_free_port(min_port: int = 20_000, max_port: int = 40_000, max_attempt: int = 20) -> int:
    """Pick a random unused localhost port.

    .. note ::

        Another process may grab the port before we bind it.
        Rare enough for test runs.

    :param max_attempt:
        Random picks before giving up

    :raise RuntimeError:
        All picks were taken
    """
    assert type(min_port) == int
    assert type(max_port) == int
    assert type(max_attempt) == int

    for attempt in range(max_attempt):
        port = random.randrange(min_port, max_port)
        if not is_localhost_port_listening(port, "127.0.0.1"):
            logger.debug("Picked free port %d on attempt %d", port, attempt + 1)
            return port

    raise RuntimeError(f"No free port in range {min_port} - {max_port} after {max_attempt} attempts")


def _drain(stream, name: str, log_level: Optional[int]) -> bytes:
    output = b""
    for line in stream.readlines():
        output += line
        if log_level is not None:
            logger.log(log_level, "%s: %s", name, line.decode("utf-8").strip())
    return output


def shutdown_hard(
    process: psutil.Popen,
    log_level: Optional[int] = None,
    block=True,
    block_timeout=30,
    check_port: Optional[int] = None,
) -> tuple[bytes, bytes]:
    """SIGKILL a background process and collect what it printed.

    :param log_level:
        Also write the output to logs at this level

    :param block:
        Wait until `check_port` is no longer listening

    :param block_timeout:
        Seconds to wait for the port

    :param check_port:
        Port the process was serving. Needed with `block`.

    :return:
        stdout, stderr
    """
    if process.poll() is None:
        process.kill()

    stdout = _drain(process.stdout, "stdout", log_level)
    stderr = _drain(process.stderr, "stderr", log_level)

    if not block:
        return stdout, stderr

    assert check_port is not None, "check_port needed to block until shutdown"
    deadline = time.time() + block_timeout
    while time.time() < deadline:
        if not is_localhost_port_listening(check_port):
            return stdout, stderr
        time.sleep(0.1)

    raise AssertionError(f"Process still listening on {check_port} after {block_timeout} seconds, stdout {len(stdout)} bytes, stderr {len(stderr)} bytes")


def setup_console_logging(default_log_level="warning") -> logging.Logger:
    """Colourful logs for scripts.

    - `LOG_LEVEL` environment variable overrides `default_log_level`

    - web3 and urllib3 request logging is muted below warning

    :return:
        Root logger
    """
    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert numeric_level, f"Unknown log level: {level}"

    coloredlogs.install(level=numeric_level, fmt="%(asctime)s %(name)-44s %(message)s", datefmt="%H:%M:%S")

    for noisy in ("web3.providers.HTTPProvider", "web3.RequestManager", "urllib3.connectionpool"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logging.getLogger()
