"""Client address lease: trade an account + public key for a tunnel address."""

from __future__ import annotations

from ipaddress import IPv4Address, ip_interface
from typing import Optional

import requests

from relayguard.config import CONFIG
from relayguard.exceptions import KeyExchangeError
from relayguard.logging_utils import get_logger

logger = get_logger("relayguard.keyexchange")


def parse_address_list(body: str) -> str:
    """First IPv4 address of a comma-separated ``addr/prefix`` list."""

    for item in body.strip().split(","):
        item = item.strip()
        if not item:
            continue
        try:
            iface = ip_interface(item)
        except ValueError as exc:
            raise KeyExchangeError(f"unparseable address in key exchange response: {item!r}") from exc
        if isinstance(iface.ip, IPv4Address):
            return str(iface.ip)
    raise KeyExchangeError("no IPv4 address received from key exchange")


def obtain_client_address(
    account: str,
    public_key: str,
    *,
    url: Optional[str] = None,
    timeout: Optional[float] = None,
    session: Optional[requests.Session] = None,
) -> str:
    if not account:
        raise KeyExchangeError("account number is required for key exchange")
    http = session or requests.Session()
    try:
        resp = http.post(
            url or CONFIG["KEY_EXCHANGE_URL"],
            data={"account": account, "pubkey": public_key},
            timeout=float(timeout if timeout is not None else CONFIG["HTTP_TIMEOUT_S"]),
        )
    except requests.RequestException as exc:
        raise KeyExchangeError(f"key exchange request failed: {exc}") from exc

    if resp.status_code != 201:
        raise KeyExchangeError(f"key exchange failed: status code {resp.status_code}, body: {resp.text.strip()}")

    address = parse_address_list(resp.text)
    logger.info("client address obtained", extra={"address": address})
    return address


def upload_public_key(
    account: str,
    public_key: str,
    *,
    url_template: Optional[str] = None,
    timeout: Optional[float] = None,
    session: Optional[requests.Session] = None,
) -> None:
    """Register a rotated public key with the account (expects HTTP 200)."""

    if not account:
        raise KeyExchangeError("account number is required for key upload")
    url = (url_template or CONFIG["KEY_UPLOAD_URL"]).format(account=account)
    http = session or requests.Session()
    try:
        resp = http.post(
            url,
            json={"key": public_key},
            timeout=float(timeout if timeout is not None else CONFIG["HTTP_TIMEOUT_S"]),
        )
    except requests.RequestException as exc:
        raise KeyExchangeError(f"key upload request failed: {exc}") from exc

    if resp.status_code != 200:
        raise KeyExchangeError(
            f"failed to update public key, status code: {resp.status_code}, response: {resp.text.strip()}"
        )
    logger.info("public key uploaded")
