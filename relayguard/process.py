"""
One-shot external command execution.

Tunnel and network-state adapters shell out to system tools (wg-quick,
operator revert commands). Output is captured and folded into the raised
error so failures stay opaque but readable.
"""

import shlex
import subprocess
from typing import Callable, List, Sequence, Type

from relayguard.logging_utils import get_logger

logger = get_logger("relayguard.process")

# (argv) -> combined output; raises on non-zero exit
CommandRunner = Callable[[Sequence[str]], str]


def run_command(cmd: Sequence[str], *, timeout: float = 30.0, error: Type[Exception] = RuntimeError) -> str:
    argv: List[str] = list(cmd)
    printable = " ".join(shlex.quote(part) for part in argv)
    logger.debug("running command", extra={"cmd": printable})
    try:
        result = subprocess.run(argv, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as exc:
        raise error(f"{printable} timed out after {timeout}s") from exc
    except OSError as exc:
        raise error(f"{printable} could not start: {exc}") from exc

    output = "\n".join(part.strip() for part in (result.stdout, result.stderr) if part and part.strip())
    if result.returncode != 0:
        raise error(f"{printable} exited with status {result.returncode}\nOutput: {output}")
    return output


def split_command(line: str) -> List[str]:
    """Split an operator-supplied command line the way a POSIX shell would."""
    return shlex.split(line)
