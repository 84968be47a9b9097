"""
Unified CLI entrypoint for relayguard.

Supports subcommands:
- select: Run one selection round and print the chosen relay(s)
- best: Print the latency ranking (top N)
- status: Query the status oracle and print the egress report
- connect: Select, bring the tunnel up and supervise it until interrupted
- rotate-keys: Put a fresh private key into the tunnel config and register it
- autostart: Enable the wg-quick systemd unit for the interface

Configuration comes from CONFIG defaults, .guardenv files and the
environment; command-line flags override the selection policy.
"""

import sys
import argparse
import json
import signal
import logging
import threading
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Dict, Optional

from relayguard.catalog import RelayCatalog
from relayguard.config import load_config, policy_from_config
from relayguard.env_loader import load_env_files
from relayguard.exceptions import (
    CatalogError,
    ConfigError,
    NetworkStateError,
    ProbeError,
    SelectionError,
    StatusUnavailable,
    TunnelError,
    KeyExchangeError,
)
from relayguard.logging_utils import METRICS, configure_file_logger, get_logger
from relayguard.models import SelectionPolicy
from relayguard.netstate import SnapshotNetworkState
from relayguard.prober import LatencyProber, ProbeOptions
from relayguard.selector import ServerSelector
from relayguard.status import HttpStatusOracle
from relayguard.supervisor import ConnectionSupervisor
from relayguard.tunnel import WgQuickDriver

logger = get_logger("relayguard")

_SELECTION_ERRORS = (CatalogError, ProbeError, SelectionError)


def _resolve_config(args: argparse.Namespace) -> Dict[str, Any]:
    env_file = Path(args.env_file) if getattr(args, "env_file", None) else None
    load_env_files(extra=env_file)
    cfg = load_config()

    if getattr(args, "interface", None):
        cfg["INTERFACE_NAME"] = args.interface
    if getattr(args, "dns", None):
        cfg["DNS_SERVERS"] = [s.strip() for s in args.dns.split(",") if s.strip()]
    return cfg


def _resolve_policy(cfg: Dict[str, Any], args: argparse.Namespace) -> SelectionPolicy:
    policy = policy_from_config(cfg)
    if getattr(args, "server", None):
        policy = replace(policy, explicit_hostname=args.server)
    if getattr(args, "country", None):
        policy = replace(policy, region_code=args.country)
    if getattr(args, "no_latency", False):
        policy = replace(policy, use_latency_ranking=False)
    if getattr(args, "multihop", False):
        policy = replace(policy, multi_hop=True)
    return policy


def build_selector(cfg: Dict[str, Any]) -> ServerSelector:
    catalog = RelayCatalog(cfg["RELAY_LIST_URL"], timeout=cfg["HTTP_TIMEOUT_S"])
    prober = LatencyProber(options=ProbeOptions.from_config(cfg))
    return ServerSelector(catalog, prober, cfg["RELAY_CAPABILITY"])


def _relay_line(relay) -> str:
    return f"{relay.hostname} ({relay.country_code}, {relay.ipv4_endpoint})"


def select_command(args: argparse.Namespace) -> int:
    cfg = _resolve_config(args)
    policy = _resolve_policy(cfg, args)
    try:
        selection = build_selector(cfg).select(policy)
    except _SELECTION_ERRORS as exc:
        print(f"Error: failed to select server: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps({"relays": [asdict(r) for r in selection.relays]}, indent=2))
    else:
        print(f"Selected server: {_relay_line(selection.primary)}")
        if selection.second_hop is not None:
            print(f"Exit hop: {_relay_line(selection.second_hop)}")
    return 0


def best_command(args: argparse.Namespace) -> int:
    cfg = _resolve_config(args)
    selector = build_selector(cfg)
    try:
        ranking = selector.ranked(args.count, args.country or None)
    except ValueError as exc:
        print(f"Error: invalid --count: {exc}", file=sys.stderr)
        return 1
    except (CatalogError, ProbeError) as exc:
        print(f"Error: failed to rank servers: {exc}", file=sys.stderr)
        return 1

    for position, m in enumerate(ranking, start=1):
        print(f"{position:>3}. {_relay_line(m.relay)}  {m.latency_ms:.1f} ms")
    return 0


def status_command(args: argparse.Namespace) -> int:
    cfg = _resolve_config(args)
    oracle = HttpStatusOracle(cfg["STATUS_URL"], timeout=cfg["HTTP_TIMEOUT_S"])
    try:
        status = oracle.check()
    except StatusUnavailable as exc:
        print(f"Error checking VPN status: {exc}", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(status.as_dict(), indent=2))
        return 0

    print(f"Current IP: {status.ip}")
    print(f"Country: {status.country}{f' ({status.country_code})' if status.country_code else ''}")
    print(f"City: {status.city}")
    if status.organization:
        print(f"Organization: {status.organization}")
    print("Your connection is secure." if status.secure else "Your connection is NOT secure.")
    if status.exit_server:
        print(f"You are connected to a relay server{f' ({status.exit_hostname})' if status.exit_hostname else ''}.")
    else:
        print("You are NOT connected to a relay server.")
    if status.blacklisted:
        print("Warning: the current exit IP is blacklisted.")
    return 0


def connect_command(args: argparse.Namespace) -> int:
    cfg = _resolve_config(args)
    policy = _resolve_policy(cfg, args)
    if not cfg["MULLVAD_ACCOUNT_NUMBER"]:
        print("Error: MULLVAD_ACCOUNT_NUMBER is required for connect", file=sys.stderr)
        return 1

    selector = build_selector(cfg)
    try:
        selection = selector.select(policy)
    except _SELECTION_ERRORS as exc:
        print(f"Error: failed to select server: {exc}", file=sys.stderr)
        return 1
    print(f"Selected server: {_relay_line(selection.primary)}")

    try:
        network = SnapshotNetworkState(Path(cfg["RESOLV_CONF_PATH"]), cfg["ROUTE_REVERT_COMMANDS"])
    except NetworkStateError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    driver = WgQuickDriver(cfg)
    try:
        if selection.second_hop is None:
            driver.up(selection.primary)
        else:
            driver.up(selection.primary, exit_relay=selection.second_hop)
    except (TunnelError, KeyExchangeError, OSError) as exc:
        print(f"Error: failed to set up tunnel: {exc}", file=sys.stderr)
        _cleanup_failed_setup(driver, network)
        return 1

    if cfg["ENABLE_AUTO_START"] or args.autostart:
        try:
            driver.enable_autostart()
        except TunnelError as exc:
            # not fatal: the tunnel is already up
            logger.error("Failed to configure auto-start", extra={"error": str(exc)})

    supervisor = ConnectionSupervisor(
        selector,
        driver,
        HttpStatusOracle(cfg["STATUS_URL"], timeout=cfg["HTTP_TIMEOUT_S"]),
        network,
        policy,
        interval_s=cfg["MONITOR_INTERVAL_S"],
        initial_relay=selection.primary,
    )

    shutdown = threading.Event()

    def _on_signal(signum, frame):
        logger.info("Received termination signal. Cleaning up...", extra={"signal": signum})
        shutdown.set()

    signal.signal(signal.SIGINT, _on_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _on_signal)

    supervisor.start()
    try:
        while not shutdown.wait(1.0):
            if supervisor.terminated:
                break
    finally:
        supervisor.stop()

    logger.info("Cleanup complete.", extra={"metrics": METRICS.snapshot()})
    if supervisor.last_error is not None:
        print(f"Error: supervision stopped after failed failover: {supervisor.last_error}", file=sys.stderr)
        return 1
    return 0


def rotate_keys_command(args: argparse.Namespace) -> int:
    cfg = _resolve_config(args)
    if not cfg["MULLVAD_ACCOUNT_NUMBER"]:
        print("Error: MULLVAD_ACCOUNT_NUMBER is required for rotate-keys", file=sys.stderr)
        return 1
    try:
        public_key = WgQuickDriver(cfg).rotate_keys()
    except (TunnelError, KeyExchangeError) as exc:
        print(f"Error: failed to rotate keys: {exc}", file=sys.stderr)
        return 1
    print(f"New public key: {public_key}")
    print("Reconnect to start using the new key.")
    return 0


def autostart_command(args: argparse.Namespace) -> int:
    cfg = _resolve_config(args)
    try:
        WgQuickDriver(cfg).enable_autostart()
    except TunnelError as exc:
        print(f"Error: failed to configure auto-start: {exc}", file=sys.stderr)
        return 1
    print(f"wg-quick@{cfg['INTERFACE_NAME']} will start on boot.")
    return 0


def _cleanup_failed_setup(driver: WgQuickDriver, network: SnapshotNetworkState) -> None:
    try:
        driver.down()
    except TunnelError as exc:
        logger.error("Failed to disconnect VPN after setup failure", extra={"error": str(exc)})
    try:
        network.rollback()
    except NetworkStateError as exc:
        logger.error("Failed to revert network state", extra={"error": str(exc)})


def _add_common(sub: argparse.ArgumentParser) -> None:
    sub.add_argument("--env-file", help="Extra KEY=VALUE file loaded after .guardenv")
    sub.add_argument("--quiet", action="store_true",
                     help="Suppress informational logs (warnings/errors still shown)")
    sub.add_argument("--log-file", action="store_true",
                     help="Also write JSON logs under logs/")


def _add_policy(sub: argparse.ArgumentParser) -> None:
    sub.add_argument("--server", help="Relay hostname to use (e.g., se-mma-wg-001)")
    sub.add_argument("--country", help="Country code or name for server selection")
    sub.add_argument("--no-latency", action="store_true",
                     help="Disable latency-based selection when no server/country is given")
    sub.add_argument("--multihop", action="store_true", help="Select an exit hop as well")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="relayguard", description="Latency-ranked relay selection and tunnel supervision")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    select_parser = subparsers.add_parser("select", help="Select relay(s) using the configured policy")
    _add_common(select_parser)
    _add_policy(select_parser)
    select_parser.add_argument("--json", action="store_true", help="Print JSON instead of text")

    best_parser = subparsers.add_parser("best", help="Print the latency ranking")
    _add_common(best_parser)
    best_parser.add_argument("--country", help="Restrict ranking to a country")
    best_parser.add_argument("--count", type=int, default=5, help="Number of relays to print (default: 5)")

    status_parser = subparsers.add_parser("status", help="Check whether egress is tunneled")
    _add_common(status_parser)
    status_parser.add_argument("--json", action="store_true", help="Print JSON instead of text")

    connect_parser = subparsers.add_parser("connect", help="Connect and supervise the tunnel")
    _add_common(connect_parser)
    _add_policy(connect_parser)
    connect_parser.add_argument("--interface", help="WireGuard interface name (default: CONFIG INTERFACE_NAME)")
    connect_parser.add_argument("--dns", help="DNS servers to use (comma-separated)")
    connect_parser.add_argument("--autostart", action="store_true",
                                help="Also enable wg-quick@<interface> on boot (default: CONFIG ENABLE_AUTO_START)")

    rotate_parser = subparsers.add_parser("rotate-keys", help="Generate a new key pair and register it")
    _add_common(rotate_parser)
    rotate_parser.add_argument("--interface", help="WireGuard interface name (default: CONFIG INTERFACE_NAME)")

    autostart_parser = subparsers.add_parser("autostart", help="Enable the tunnel interface on boot")
    _add_common(autostart_parser)
    autostart_parser.add_argument("--interface", help="WireGuard interface name (default: CONFIG INTERFACE_NAME)")

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint with subcommands."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.quiet:
        logger.setLevel(logging.WARNING)
    if args.log_file:
        configure_file_logger(args.command, logger)

    handlers = {
        "select": select_command,
        "best": best_command,
        "status": status_command,
        "connect": connect_command,
        "rotate-keys": rotate_keys_command,
        "autostart": autostart_command,
    }
    try:
        return handlers[args.command](args)
    except ConfigError as exc:
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
