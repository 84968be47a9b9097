"""
Egress status oracle.

``HttpStatusOracle.check()`` asks the connection-check endpoint whether
traffic currently leaves through a tunnel exit. The supervisor only needs the
boolean (``is_secure``); the full ``ConnectionStatus`` feeds the CLI report.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Protocol

import pycountry
import requests
from pydantic import ValidationError

from relayguard.config import CONFIG
from relayguard.exceptions import StatusUnavailable
from relayguard.schemas import StatusRecord


class StatusOracle(Protocol):
    def is_secure(self) -> bool:
        """True when egress is tunneled. May raise; callers treat errors as insecure."""
        ...


@dataclass(frozen=True)
class ConnectionStatus:
    secure: bool
    ip: str
    country: str
    country_code: str
    city: str
    organization: str
    exit_server: bool
    exit_hostname: Optional[str]
    blacklisted: bool

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


_ALPHA2 = re.compile(r"^[A-Z]{2}$")


def country_code_for(country: str) -> str:
    """ISO 3166 alpha-2 code for a country name (or code); '' when unrecognised."""

    if _ALPHA2.match(country):
        return country
    try:
        return pycountry.countries.lookup(country).alpha_2
    except LookupError:
        return ""


def decode_status(payload: Any) -> ConnectionStatus:
    try:
        record = StatusRecord.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "body"
        raise StatusUnavailable(f"status response field {field}: {first['msg']}") from exc
    return ConnectionStatus(
        secure=record.mullvad_exit_ip,
        ip=record.ip,
        country=record.country,
        country_code=country_code_for(record.country),
        city=record.city,
        organization=record.organization,
        exit_server=record.mullvad_server,
        exit_hostname=record.mullvad_exit_ip_hostname,
        blacklisted=record.is_blacklisted,
    )


class HttpStatusOracle:
    def __init__(
        self,
        url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url or CONFIG["STATUS_URL"]
        self.timeout = float(timeout if timeout is not None else CONFIG["HTTP_TIMEOUT_S"])
        self._session = session or requests.Session()

    def check(self) -> ConnectionStatus:
        try:
            resp = self._session.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except requests.RequestException as exc:
            raise StatusUnavailable(f"status request failed: {exc}") from exc
        except ValueError as exc:
            raise StatusUnavailable(f"status response is not JSON: {exc}") from exc
        return decode_status(payload)

    def is_secure(self) -> bool:
        return self.check().secure
