"""
Core configuration constants for the relay selector and connection supervisor.

Single source of truth for directory endpoints, probe tuning, tunnel
interface settings and the default selection policy.
"""

import os
from ipaddress import ip_address, ip_network
from typing import Any, Dict, List
from urllib.parse import urlparse

from relayguard.exceptions import ConfigError
from relayguard.models import SelectionPolicy


# Default configuration - all required keys with correct types
CONFIG = {
    # Directory / oracle endpoints
    "RELAY_LIST_URL": "https://api.mullvad.net/www/relays/all/",
    "STATUS_URL": "https://am.i.mullvad.net/json",
    "KEY_EXCHANGE_URL": "https://api.mullvad.net/wg/",
    # Rotated public keys are posted here; {account} is filled in.
    "KEY_UPLOAD_URL": "https://api.mullvad.net/v1/account/{account}/wireguard-key/",
    "HTTP_TIMEOUT_S": 10.0,

    # Relays must advertise this protocol type (case-insensitive)
    "RELAY_CAPABILITY": "wireguard",

    # --- Latency probing ---
    # Coarse phase: one TCP connect per relay against this port.
    "PROBE_PORT": 443,
    "PROBE_TIMEOUT_S": 0.5,
    # Refined phase: REFINE_ATTEMPTS connects per shortlisted relay.
    "REFINE_TIMEOUT_S": 2.0,
    "REFINE_ATTEMPTS": 3,
    # Shortlist = max(REFINE_FLOOR, ceil(REFINE_FRACTION * survivors)), capped at survivors.
    "REFINE_FRACTION": 0.1,
    "REFINE_FLOOR": 5,
    # Upper bound on probes in flight at once.
    "PROBE_WORKER_CAP": 50,

    # --- Supervisor ---
    "MONITOR_INTERVAL_S": 300.0,

    # --- Tunnel ---
    "INTERFACE_NAME": "wg0",
    "WIREGUARD_DIR": "/etc/wireguard",
    "WIREGUARD_PORT": 51820,
    "DNS_SERVERS": ["10.64.0.1"],
    "RESOLV_CONF_PATH": "/etc/resolv.conf",
    # Run on rollback after the resolver snapshot is restored.
    "ROUTE_REVERT_COMMANDS": [],

    # Account used by the key exchange; only required by `connect`.
    "MULLVAD_ACCOUNT_NUMBER": "",

    # --- Selection policy (explicit name > region > latency ranking) ---
    "SERVER_NAME": "",
    "COUNTRY_CODE": "",
    "USE_LATENCY_BASED_SELECTION": True,
    "ENABLE_MULTIHOP": False,

    # --- Optional hardening knobs rendered into the tunnel config ---
    "ENABLE_KILL_SWITCH": False,
    # Keep this LAN reachable outside the tunnel (empty disables).
    "LOCAL_NETWORK_CIDR": "",
    "PRE_UP": [],
    "POST_UP": [],
    "PRE_DOWN": [],
    "POST_DOWN": [],
    # Redirect inbound TCP on SOCKS5_PROXY_PORT to the local proxy on 1080.
    "USE_SOCKS5_PROXY": False,
    "SOCKS5_PROXY_PORT": 1080,
    # systemctl enable wg-quick@<iface> after a successful connect.
    "ENABLE_AUTO_START": False,
}


# Required keys with their expected types
_REQUIRED_KEYS = {
    "RELAY_LIST_URL": str,
    "STATUS_URL": str,
    "KEY_EXCHANGE_URL": str,
    "KEY_UPLOAD_URL": str,
    "HTTP_TIMEOUT_S": float,
    "RELAY_CAPABILITY": str,
    "PROBE_PORT": int,
    "PROBE_TIMEOUT_S": float,
    "REFINE_TIMEOUT_S": float,
    "REFINE_ATTEMPTS": int,
    "REFINE_FRACTION": float,
    "REFINE_FLOOR": int,
    "PROBE_WORKER_CAP": int,
    "MONITOR_INTERVAL_S": float,
    "INTERFACE_NAME": str,
    "WIREGUARD_DIR": str,
    "WIREGUARD_PORT": int,
    "DNS_SERVERS": list,
    "RESOLV_CONF_PATH": str,
    "ROUTE_REVERT_COMMANDS": list,
    "MULLVAD_ACCOUNT_NUMBER": str,
    "SERVER_NAME": str,
    "COUNTRY_CODE": str,
    "USE_LATENCY_BASED_SELECTION": bool,
    "ENABLE_MULTIHOP": bool,
    "ENABLE_KILL_SWITCH": bool,
    "LOCAL_NETWORK_CIDR": str,
    "PRE_UP": list,
    "POST_UP": list,
    "PRE_DOWN": list,
    "POST_DOWN": list,
    "USE_SOCKS5_PROXY": bool,
    "SOCKS5_PROXY_PORT": int,
    "ENABLE_AUTO_START": bool,
}

# Keys that can be overridden by environment variables
_ENV_OVERRIDABLE = set(_REQUIRED_KEYS)

# Float keys also accept ints from literal configs
_FLOAT_KEYS = {key for key, expected in _REQUIRED_KEYS.items() if expected is float}

_PORT_KEYS = ("PROBE_PORT", "WIREGUARD_PORT", "SOCKS5_PROXY_PORT")
_URL_KEYS = ("RELAY_LIST_URL", "STATUS_URL", "KEY_EXCHANGE_URL", "KEY_UPLOAD_URL")


def validate_config(cfg: Dict[str, Any]) -> None:
    """
    Ensure all required keys exist with correct types/ranges.
    Raise ConfigError("<reason>") on any violation.
    No return value on success.
    """
    # Check all required keys exist
    missing_keys = set(_REQUIRED_KEYS.keys()) - set(cfg.keys())
    if missing_keys:
        raise ConfigError(f"CONFIG missing required keys: {', '.join(sorted(missing_keys))}")

    # Check types for all keys
    for key, expected_type in _REQUIRED_KEYS.items():
        value = cfg[key]
        if key in _FLOAT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(
                    f"CONFIG[{key}] must be float seconds, got {type(value).__name__}"
                )
            continue
        if expected_type is int and isinstance(value, bool):
            raise ConfigError(f"CONFIG[{key}] must be int, got bool")
        if not isinstance(value, expected_type):
            raise ConfigError(f"CONFIG[{key}] must be {expected_type.__name__}, got {type(value).__name__}")

    for key in _PORT_KEYS:
        port = cfg[key]
        if not (1 <= port <= 65535):
            raise ConfigError(f"CONFIG[{key}] must be valid port (1-65535), got {port}")

    for key in _URL_KEYS:
        parsed = urlparse(cfg[key])
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ConfigError(f"CONFIG[{key}] must be an http(s) URL, got {cfg[key]!r}")
    try:
        cfg["KEY_UPLOAD_URL"].format(account="0")
    except (KeyError, IndexError, ValueError) as exc:
        raise ConfigError(f"CONFIG[KEY_UPLOAD_URL] may only use the {{account}} placeholder: {exc!r}")

    for key in ("HTTP_TIMEOUT_S", "PROBE_TIMEOUT_S", "REFINE_TIMEOUT_S", "MONITOR_INTERVAL_S"):
        if cfg[key] <= 0:
            raise ConfigError(f"CONFIG[{key}] must be > 0, got {cfg[key]}")

    if cfg["PROBE_WORKER_CAP"] < 1:
        raise ConfigError(f"CONFIG[PROBE_WORKER_CAP] must be >= 1, got {cfg['PROBE_WORKER_CAP']}")
    if cfg["REFINE_ATTEMPTS"] < 1:
        raise ConfigError(f"CONFIG[REFINE_ATTEMPTS] must be >= 1, got {cfg['REFINE_ATTEMPTS']}")
    if cfg["REFINE_FLOOR"] < 1:
        raise ConfigError(f"CONFIG[REFINE_FLOOR] must be >= 1, got {cfg['REFINE_FLOOR']}")
    if not (0.0 < cfg["REFINE_FRACTION"] <= 1.0):
        raise ConfigError(f"CONFIG[REFINE_FRACTION] must be in (0, 1], got {cfg['REFINE_FRACTION']}")

    if not cfg["INTERFACE_NAME"] or len(cfg["INTERFACE_NAME"]) > 15:
        raise ConfigError(f"CONFIG[INTERFACE_NAME] must be 1-15 characters, got {cfg['INTERFACE_NAME']!r}")
    if not cfg["RELAY_CAPABILITY"].strip():
        raise ConfigError("CONFIG[RELAY_CAPABILITY] must be non-empty")

    for server in cfg["DNS_SERVERS"]:
        try:
            ip_address(str(server))
        except ValueError as exc:
            raise ConfigError(f"CONFIG[DNS_SERVERS] entries must be IP addresses: {exc}")

    if cfg["LOCAL_NETWORK_CIDR"]:
        try:
            ip_network(cfg["LOCAL_NETWORK_CIDR"], strict=False)
        except ValueError as exc:
            raise ConfigError(f"CONFIG[LOCAL_NETWORK_CIDR] must be a CIDR block: {exc}")

    for key in ("ROUTE_REVERT_COMMANDS", "PRE_UP", "POST_UP", "PRE_DOWN", "POST_DOWN"):
        if not all(isinstance(item, str) for item in cfg[key]):
            raise ConfigError(f"CONFIG[{key}] must be a list of strings")


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _apply_env_overrides(cfg: Dict[str, Any], environ=None) -> Dict[str, Any]:
    """Apply environment variable overrides to config."""
    env = os.environ if environ is None else environ
    result = cfg.copy()

    for key in _ENV_OVERRIDABLE:
        env_var = key
        if env_var in env:
            env_value = env[env_var]
            expected_type = _REQUIRED_KEYS[key]

            try:
                if expected_type == int:
                    result[key] = int(env_value)
                elif expected_type == str:
                    result[key] = str(env_value)
                elif expected_type == bool:
                    lowered = str(env_value).strip().lower()
                    if lowered in {"1", "true", "yes", "on"}:
                        result[key] = True
                    elif lowered in {"0", "false", "no", "off"}:
                        result[key] = False
                    else:
                        raise ValueError(f"invalid boolean literal: {env_value}")
                elif expected_type == float:
                    result[key] = float(env_value)
                elif expected_type == list:
                    result[key] = _split_list(env_value)
                else:
                    raise ConfigError(f"Unsupported type for env override: {expected_type}")
            except ValueError:
                raise ConfigError(f"Invalid {expected_type.__name__} value for {env_var}: {env_value}")

    return result


def load_config(environ=None, base: Dict[str, Any] = None) -> Dict[str, Any]:
    """Return a validated copy of ``base`` (defaults) with env overrides applied."""
    cfg = _apply_env_overrides(dict(base or _DEFAULTS), environ)
    validate_config(cfg)
    return cfg


def policy_from_config(cfg: Dict[str, Any]) -> SelectionPolicy:
    """Build the selection policy described by SERVER_NAME / COUNTRY_CODE / flags."""
    return SelectionPolicy(
        explicit_hostname=cfg.get("SERVER_NAME") or None,
        region_code=cfg.get("COUNTRY_CODE") or None,
        use_latency_ranking=bool(cfg.get("USE_LATENCY_BASED_SELECTION", True)),
        multi_hop=bool(cfg.get("ENABLE_MULTIHOP", False)),
    )


_DEFAULTS = dict(CONFIG)

# Apply environment overrides and validate
CONFIG = _apply_env_overrides(CONFIG)
validate_config(CONFIG)
