"""
Value types shared by the catalog, prober, selector and supervisor.

All records are frozen; a selection round builds fresh descriptors from the
directory and drops them when the round ends.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


@dataclass(frozen=True)
class RelayDescriptor:
    """One relay as advertised by the directory."""

    hostname: str
    ipv4_endpoint: str
    country_code: str
    public_key: str
    capability_type: str


@dataclass(frozen=True)
class LatencyMeasurement:
    """Latency (seconds) of a relay that answered; unreachable relays have none."""

    relay: RelayDescriptor
    latency: float

    @property
    def latency_ms(self) -> float:
        return round(self.latency * 1000.0, 3)


@dataclass(frozen=True)
class SelectionPolicy:
    """Caller-supplied policy for one selection round.

    Precedence: explicit_hostname, then region_code, then use_latency_ranking.
    """

    explicit_hostname: Optional[str] = None
    region_code: Optional[str] = None
    use_latency_ranking: bool = True
    multi_hop: bool = False


@dataclass(frozen=True)
class Selection:
    """Outcome of a selection round: entry relay plus optional second hop."""

    primary: RelayDescriptor
    second_hop: Optional[RelayDescriptor] = None

    @property
    def relays(self) -> Tuple[RelayDescriptor, ...]:
        if self.second_hop is None:
            return (self.primary,)
        return (self.primary, self.second_hop)


class SupervisorState(str, Enum):
    CONNECTED = "CONNECTED"
    SWITCHING = "SWITCHING"
    TERMINATED = "TERMINATED"
