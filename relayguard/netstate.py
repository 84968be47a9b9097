"""
Ambient network state the supervisor restores on exit.

``SnapshotNetworkState`` records the resolver file when constructed, before
the tunnel touches it. ``rollback()`` writes the snapshot back and then runs
the operator's revert commands (e.g. ``ip route del default dev wg0``).
Every step is attempted even if an earlier one fails.
"""

from __future__ import annotations

from functools import partial
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from relayguard.exceptions import NetworkStateError
from relayguard.logging_utils import get_logger
from relayguard.process import CommandRunner, run_command, split_command

logger = get_logger("relayguard.netstate")


class NetworkState(Protocol):
    def rollback(self) -> None:
        ...


class SnapshotNetworkState:
    def __init__(
        self,
        resolv_conf: Path,
        revert_commands: Sequence[str] = (),
        *,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.resolv_conf = Path(resolv_conf)
        self.revert_commands = list(revert_commands)
        self._runner = runner or partial(run_command, error=NetworkStateError)
        try:
            self._snapshot = self.resolv_conf.read_text(encoding="utf-8")
        except OSError as exc:
            raise NetworkStateError(f"failed to read original DNS config {self.resolv_conf}: {exc}") from exc

    @property
    def snapshot(self) -> str:
        return self._snapshot

    def rollback(self) -> None:
        failures: List[str] = []

        try:
            self.resolv_conf.write_text(self._snapshot, encoding="utf-8")
        except OSError as exc:
            failures.append(f"revert DNS config: {exc}")

        for line in self.revert_commands:
            try:
                self._runner(split_command(line))
            except (NetworkStateError, ValueError) as exc:
                failures.append(f"{line}: {exc}")

        if failures:
            raise NetworkStateError("; ".join(failures))
        logger.info(
            "network state restored",
            extra={"resolv_conf": str(self.resolv_conf), "commands": len(self.revert_commands)},
        )
