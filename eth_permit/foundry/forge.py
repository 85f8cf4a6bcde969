"""Forge smart contract development toolchain integration.

- Compile Foundry projects with `forge build`

- Locate the compiled artifacts so they can be deployed with :py:func:`eth_permit.deploy.deploy_contract`

- See `Foundry book <https://book.getfoundry.sh/>`__ for more information.
"""

import logging
from pathlib import Path
from shutil import which
from subprocess import DEVNULL, PIPE, TimeoutExpired

import psutil

logger = logging.getLogger(__name__)


#: Crash unless forge completes in 4 minutes
#:
DEFAULT_TIMEOUT = 4 * 60


class ForgeFailed(Exception):
    """Forge command failed."""


def _exec_cmd(
    cmd_line: list[str],
    cwd: Path,
    timeout=DEFAULT_TIMEOUT,
) -> str:
    """Execute the command line.

    :param timeout:
        Timeout in seconds

    :return:
        Combined stdout and stderr
    """

    for x in cmd_line:
        assert type(x) == str, f"Got non-string in command line: {x} in {cmd_line}"

    proc = psutil.Popen(cmd_line, stdin=DEVNULL, stdout=PIPE, stderr=PIPE, cwd=cwd)
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except TimeoutExpired as e:
        proc.kill()
        raise ForgeFailed(f"forge did not complete in {timeout} seconds: {' '.join(cmd_line)}") from e

    output = stdout.decode("utf-8") + stderr.decode("utf-8")

    if proc.returncode != 0:
        raise ForgeFailed(f"forge return code {proc.returncode} when running: {' '.join(cmd_line)}\nOutput is:\n{output}")

    logger.debug("forge result:\n%s", output)
    return output


def get_forge_artifact_path(
    project_folder: Path,
    contract_file: Path | str,
    contract_name: str,
) -> Path:
    """Where Forge writes the ABI and bytecode of a contract.

    Assumes standard Foundry project layout with `foundry.toml`, `src` and `out`.

    :return:
        Absolute path `out/{contract_file}/{contract_name}.json`
    """
    return (project_folder / "out" / Path(contract_file).name / f"{contract_name}.json").resolve()


def compile_contract_with_forge(
    project_folder: Path,
    contract_file: Path | str,
    contract_name: str,
    timeout=DEFAULT_TIMEOUT,
) -> Path:
    """Compile a Foundry project and return the artifact of one contract.

    Example:

    .. code-block:: python

        artifact = compile_contract_with_forge(
            CONTRACTS_ROOT / "permit-token",  # Foundry project path
            "PermitToken.sol",  # src/PermitToken.sol
            "PermitToken",  # Contract name within the file
        )
        token = deploy_contract(web3, artifact, deployer, 1_000_000 * 10**18)

    Forge skips compilation when sources have not changed.

    :param project_folder:
        Foundry project with `foundry.toml` in the root.

    :param contract_file:
        Contract path relative to the `src` folder.

    :param contract_name:
        The smart contract name within the file.

    :param timeout:
        How many seconds we give to the compiler

    :raise ForgeFailed:
        Compilation failed or did not produce the artifact

    :return:
        Absolute path to the compiled JSON artifact
    """
    assert isinstance(project_folder, Path), f"Got non-Path project folder: {type(project_folder)} {project_folder}"
    assert (project_folder / "foundry.toml").exists(), f"foundry.toml missing: {project_folder}"

    src_contract_file = project_folder / "src" / contract_file
    assert src_contract_file.suffix == ".sol", f"Not Solidity source file: {contract_file}"
    assert src_contract_file.exists(), f"Contract does not exist: {src_contract_file}"

    forge = which("forge")
    assert forge is not None, "No forge command in path, needed for the contract compilation"

    logger.info("Compiling %s with forge in %s", contract_name, project_folder.resolve())
    _exec_cmd([forge, "build"], cwd=project_folder, timeout=timeout)

    artifact = get_forge_artifact_path(project_folder, contract_file, contract_name)
    if not artifact.exists():
        raise ForgeFailed(f"Forge did not produce ABI file: {artifact}")

    return artifact
