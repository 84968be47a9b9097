"""
WireGuard key handling and config rendering for the wg-quick driver.

Keys come from the ``wg`` tool; the rendered config places the optional
hook lines (kill switch, LAN exemption, SOCKS5 redirect, user hooks)
between the [Interface] and [Peer] sections.
"""

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from relayguard.exceptions import TunnelError
from relayguard.models import RelayDescriptor

_PRIVATE_KEY_LINE = re.compile(r"^PrivateKey = .*$", re.MULTILINE)


def _run_wg(args: List[str], stdin: Optional[str] = None) -> str:
    try:
        result = subprocess.run(
            ["wg", *args],
            input=stdin,
            capture_output=True,
            text=True,
            timeout=10,
            check=True,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise TunnelError(f"wg {' '.join(args)} failed: {exc}") from exc
    return result.stdout.strip()


def generate_private_key() -> str:
    return _run_wg(["genkey"])


def public_key_for(private_key: str) -> str:
    return _run_wg(["pubkey"], stdin=private_key)


def extract_key(config_text: str, key_name: str = "PrivateKey") -> str:
    """Return the value of ``key_name`` from an existing config, or ''."""

    for line in config_text.splitlines():
        name, sep, value = line.partition("=")
        if sep and name.strip() == key_name:
            return value.strip()
    return ""


def load_or_generate_private_key(config_path: Path) -> str:
    """Reuse the private key of an existing config so the address lease survives."""

    if config_path.is_file():
        existing = extract_key(config_path.read_text(encoding="utf-8"))
        if existing:
            return existing
    return generate_private_key()


def hook_lines(cfg: Dict[str, object], interface: str) -> List[str]:
    lines: List[str] = []
    for cmd in cfg.get("PRE_UP") or []:
        lines.append(f"PreUp = {cmd}")
    for cmd in cfg.get("POST_UP") or []:
        lines.append(f"PostUp = {cmd}")
    for cmd in cfg.get("PRE_DOWN") or []:
        lines.append(f"PreDown = {cmd}")
    for cmd in cfg.get("POST_DOWN") or []:
        lines.append(f"PostDown = {cmd}")

    if cfg.get("ENABLE_KILL_SWITCH"):
        rule = (
            f"OUTPUT ! -o {interface} -m mark ! --mark $(wg show {interface} fwmark) "
            "-m addrtype ! --dst-type LOCAL -j REJECT"
        )
        lines.append(f"PostUp = iptables -I {rule}")
        lines.append(f"PreDown = iptables -D {rule}")

    cidr = cfg.get("LOCAL_NETWORK_CIDR")
    if cidr:
        lines.append(f"PostUp = iptables -I OUTPUT ! -o {interface} -d {cidr} -j ACCEPT")
        lines.append(f"PreDown = iptables -D OUTPUT ! -o {interface} -d {cidr} -j ACCEPT")

    if cfg.get("USE_SOCKS5_PROXY"):
        redirect = f"PREROUTING -p tcp --dport {int(cfg['SOCKS5_PROXY_PORT'])} -j REDIRECT --to-ports 1080"
        lines.append(f"PostUp = iptables -t nat -A {redirect}")
        lines.append(f"PreDown = iptables -t nat -D {redirect}")
    return lines


def replace_private_key(config_text: str, private_key: str) -> str:
    """Swap the PrivateKey line of an existing config; every other line is kept."""

    text, count = _PRIVATE_KEY_LINE.subn(lambda _: f"PrivateKey = {private_key}", config_text)
    if count == 0:
        raise TunnelError("existing WireGuard config has no PrivateKey line")
    return text


def render_config(
    cfg: Dict[str, object],
    relay: RelayDescriptor,
    private_key: str,
    client_address: str,
    *,
    exit_relay: Optional[RelayDescriptor] = None,
    dns_servers: Optional[Sequence[str]] = None,
) -> str:
    """Render a wg-quick config for ``relay``.

    With ``exit_relay`` set, traffic enters at ``relay``'s endpoint but the
    peer key is the exit relay's (the entry relay forwards to the exit).
    """

    interface = str(cfg["INTERFACE_NAME"])
    dns = list(dns_servers if dns_servers is not None else cfg.get("DNS_SERVERS") or [])
    port = int(cfg["WIREGUARD_PORT"])
    peer = exit_relay or relay

    interface_section = [
        "[Interface]",
        f"PrivateKey = {private_key}",
        f"Address = {client_address}/32",
    ]
    if dns:
        interface_section.append(f"DNS = {', '.join(dns)}")

    hooks = hook_lines(cfg, interface)

    peer_section = [
        "[Peer]",
        f"PublicKey = {peer.public_key}",
        "AllowedIPs = 0.0.0.0/0, ::/0",
        f"Endpoint = {relay.ipv4_endpoint}:{port}",
    ]

    parts = ["\n".join(interface_section)]
    if hooks:
        parts.append("\n".join(hooks))
    parts.append("\n".join(peer_section))
    return "\n\n".join(parts) + "\n"
