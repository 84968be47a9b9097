from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# WIRE SCHEMAS
# Typed decode of the relay directory and status oracle payloads.
# Unknown keys are ignored; required keys must be present with the right type.
# =============================================================================


class RelayRecord(BaseModel):
    """One entry of the relay directory array."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    hostname: str = Field(..., min_length=1, description="Relay hostname, e.g. se-mma-wg-001")
    ipv4_addr_in: str = Field(..., min_length=1, description="Entry endpoint address")
    country_name: str = ""
    country_code: str = ""
    pubkey: str = ""
    type: str = Field(..., min_length=1, description="Capability/protocol type")

    @field_validator("country_name", "country_code", "pubkey", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        # Directory entries for retired relays carry nulls here
        return "" if value is None else value


class StatusRecord(BaseModel):
    """Status oracle response. Only mullvad_exit_ip and ip are mandatory."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    mullvad_exit_ip: bool
    ip: str
    country: str = "Unknown"
    city: str = "Unknown"
    organization: str = ""
    mullvad_server: bool = False
    mullvad_exit_ip_hostname: Optional[str] = None
    blacklisted: Union[bool, dict, None] = None

    @field_validator("country", "city", mode="before")
    @classmethod
    def _unknown_if_missing(cls, value):
        return "Unknown" if value in (None, "") else value

    @field_validator("organization", mode="before")
    @classmethod
    def _empty_if_missing(cls, value):
        return "" if value is None else value

    @property
    def is_blacklisted(self) -> bool:
        if isinstance(self.blacklisted, dict):
            return bool(self.blacklisted.get("blacklisted", False))
        return bool(self.blacklisted)
