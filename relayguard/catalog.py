"""
Relay directory client.

Fetches the full relay listing, decodes every entry through
``schemas.RelayRecord`` and filters by capability and optional region.
Nothing is cached: every ``fetch`` hits the directory again.
"""

from __future__ import annotations

from typing import Any, List, Optional

import requests
from pydantic import ValidationError

from relayguard.config import CONFIG
from relayguard.exceptions import CatalogMalformed, CatalogUnavailable, NoMatch
from relayguard.logging_utils import get_logger
from relayguard.models import RelayDescriptor
from relayguard.schemas import RelayRecord

logger = get_logger("relayguard.catalog")


def decode_records(payload: Any) -> List[RelayRecord]:
    """Validate a directory payload entry by entry, preserving upstream order."""

    if not isinstance(payload, list):
        raise CatalogMalformed(f"relay listing must be a JSON array, got {type(payload).__name__}")

    records: List[RelayRecord] = []
    for index, entry in enumerate(payload):
        try:
            records.append(RelayRecord.model_validate(entry))
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or "entry"
            raise CatalogMalformed(f"relay entry {index} field {field}: {first['msg']}") from exc
    return records


def to_descriptor(record: RelayRecord) -> RelayDescriptor:
    return RelayDescriptor(
        hostname=record.hostname,
        ipv4_endpoint=record.ipv4_addr_in,
        country_code=record.country_code or record.country_name,
        public_key=record.pubkey,
        capability_type=record.type,
    )


def in_region(record: RelayRecord, region: str) -> bool:
    """Case-insensitive match against the advertised country code or name."""

    wanted = region.strip().lower()
    return wanted in {record.country_code.lower(), record.country_name.lower()} - {""}


class RelayCatalog:
    """HTTP client for the relay directory."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url or CONFIG["RELAY_LIST_URL"]
        self.timeout = float(timeout if timeout is not None else CONFIG["HTTP_TIMEOUT_S"])
        self._session = session or requests.Session()

    def _get_payload(self) -> Any:
        try:
            resp = self._session.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise CatalogUnavailable(f"relay directory request failed: {exc}") from exc
        try:
            return resp.json()
        except ValueError as exc:
            raise CatalogMalformed(f"relay directory returned non-JSON body: {exc}") from exc

    def fetch(self, capability_type: str, region: Optional[str] = None) -> List[RelayDescriptor]:
        """Return relays offering ``capability_type``, optionally within ``region``."""

        records = decode_records(self._get_payload())

        wanted_type = capability_type.strip().lower()
        matched = [r for r in records if r.type.lower() == wanted_type]
        if region:
            matched = [r for r in matched if in_region(r, region)]

        logger.info(
            "relay catalog fetched",
            extra={
                "total": len(records),
                "matched": len(matched),
                "capability": wanted_type,
                "region": region or "",
            },
        )

        if not matched:
            if region:
                raise NoMatch(f"no {capability_type} relays found in region {region}")
            raise NoMatch(f"no {capability_type} relays found")
        return [to_descriptor(r) for r in matched]
