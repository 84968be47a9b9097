"""
Tunnel lifecycle port and the wg-quick adapter.

The supervisor depends only on ``TunnelDriver.up`` / ``TunnelDriver.down``.
``WgQuickDriver`` renders a config for the chosen relay, writes it where
wg-quick looks for it and brings the interface up or down. It also rotates
the config's key pair and enables the wg-quick systemd unit for boot.
"""

from __future__ import annotations

import os
from functools import partial
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol

import psutil

from relayguard.config import CONFIG
from relayguard.exceptions import TunnelError
from relayguard.keyexchange import obtain_client_address, upload_public_key
from relayguard.logging_utils import get_logger
from relayguard.models import RelayDescriptor
from relayguard.process import CommandRunner, run_command
from relayguard import wireguard

logger = get_logger("relayguard.tunnel")


class TunnelDriver(Protocol):
    def up(self, relay: RelayDescriptor, exit_relay: Optional[RelayDescriptor] = None) -> None:
        ...

    def down(self) -> None:
        ...


def interface_present(name: str) -> bool:
    return name in psutil.net_if_stats()


class WgQuickDriver:
    def __init__(
        self,
        cfg: Optional[Dict[str, object]] = None,
        *,
        address_provider: Optional[Callable[[str], str]] = None,
        key_uploader: Optional[Callable[[str], None]] = None,
        runner: Optional[CommandRunner] = None,
        link_check: Callable[[str], bool] = interface_present,
    ) -> None:
        self.cfg = CONFIG if cfg is None else cfg
        self.interface = str(self.cfg["INTERFACE_NAME"])
        self.config_path = Path(str(self.cfg["WIREGUARD_DIR"])) / f"{self.interface}.conf"
        account = str(self.cfg["MULLVAD_ACCOUNT_NUMBER"])
        timeout = float(self.cfg["HTTP_TIMEOUT_S"])
        self._address_provider = address_provider or partial(
            obtain_client_address, account, url=str(self.cfg["KEY_EXCHANGE_URL"]), timeout=timeout
        )
        self._key_uploader = key_uploader or partial(
            upload_public_key, account, url_template=str(self.cfg["KEY_UPLOAD_URL"]), timeout=timeout
        )
        self._runner = runner or partial(run_command, error=TunnelError)
        self._link_check = link_check
        self.active: Optional[RelayDescriptor] = None

    def _write_config(self, text: str) -> None:
        self.config_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(self.config_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)

    def up(self, relay: RelayDescriptor, exit_relay: Optional[RelayDescriptor] = None) -> None:
        private_key = wireguard.load_or_generate_private_key(self.config_path)
        public_key = wireguard.public_key_for(private_key)
        address = self._address_provider(public_key)
        self._write_config(
            wireguard.render_config(self.cfg, relay, private_key, address, exit_relay=exit_relay)
        )
        self._runner(["wg-quick", "up", self.interface])
        self.active = relay
        logger.info(
            "tunnel up",
            extra={
                "interface": self.interface,
                "relay": relay.hostname,
                "exit_relay": exit_relay.hostname if exit_relay else "",
                "endpoint": relay.ipv4_endpoint,
            },
        )

    def down(self) -> None:
        if not self._link_check(self.interface):
            logger.debug("tunnel already down", extra={"interface": self.interface})
            self.active = None
            return
        self._runner(["wg-quick", "down", self.interface])
        logger.info(
            "tunnel down",
            extra={"interface": self.interface, "relay": self.active.hostname if self.active else ""},
        )
        self.active = None

    def rotate_keys(self) -> str:
        """Write a fresh private key into the existing config, then register its public key.

        Returns the new public key. The running interface keeps its old key
        until the next ``up``.
        """

        try:
            current = self.config_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise TunnelError(f"failed to read WireGuard config {self.config_path}: {exc}") from exc

        private_key = wireguard.generate_private_key()
        public_key = wireguard.public_key_for(private_key)
        self._write_config(wireguard.replace_private_key(current, private_key))
        self._key_uploader(public_key)
        logger.info("wireguard keys rotated", extra={"interface": self.interface})
        return public_key

    def enable_autostart(self) -> None:
        self._runner(["systemctl", "enable", f"wg-quick@{self.interface}"])
        logger.info("auto-start enabled", extra={"interface": self.interface})
