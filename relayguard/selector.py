"""
Selection policy evaluation.

Precedence is fixed: an explicit hostname wins (no probing), then a region
constraint (probe that region only), then global latency ranking. Every
round fetches the catalog afresh; nothing is remembered between rounds.
"""

from __future__ import annotations

from typing import List, Optional

from relayguard.catalog import RelayCatalog
from relayguard.config import CONFIG
from relayguard.exceptions import NoSelectionPolicy, RelayNotFound
from relayguard.logging_utils import get_logger
from relayguard.models import LatencyMeasurement, RelayDescriptor, Selection, SelectionPolicy
from relayguard.prober import LatencyProber

logger = get_logger("relayguard.selector")


class ServerSelector:
    def __init__(
        self,
        catalog: RelayCatalog,
        prober: LatencyProber,
        capability_type: Optional[str] = None,
    ) -> None:
        self.catalog = catalog
        self.prober = prober
        self.capability_type = capability_type or CONFIG["RELAY_CAPABILITY"]

    def _by_hostname(self, hostname: str) -> RelayDescriptor:
        for relay in self.catalog.fetch(self.capability_type):
            if relay.hostname == hostname:
                return relay
        raise RelayNotFound(f"specified server {hostname} not found")

    def _fastest(self, region: Optional[str]) -> RelayDescriptor:
        candidates = self.catalog.fetch(self.capability_type, region)
        return self.prober.probe(candidates)[0].relay

    def _choose(self, policy: SelectionPolicy) -> RelayDescriptor:
        if policy.explicit_hostname:
            return self._by_hostname(policy.explicit_hostname)
        if policy.region_code:
            return self._fastest(policy.region_code)
        if policy.use_latency_ranking:
            return self._fastest(None)
        raise NoSelectionPolicy("no server selected: policy names no hostname, region or latency ranking")

    def select(self, policy: SelectionPolicy) -> Selection:
        """Run one selection round; errors propagate to the caller unretried."""

        primary = self._choose(policy)
        second_hop = None
        if policy.multi_hop:
            # Same branch, same pool; the first hop is not excluded.
            second_hop = self._choose(policy)
            if second_hop == primary:
                logger.warning(
                    "multi-hop selection resolved both hops to the same relay",
                    extra={"relay": primary.hostname},
                )

        logger.info(
            "relay selected",
            extra={
                "relays": [r.hostname for r in (primary, second_hop) if r is not None],
                "explicit": bool(policy.explicit_hostname),
                "region": policy.region_code or "",
                "multi_hop": policy.multi_hop,
            },
        )
        return Selection(primary=primary, second_hop=second_hop)

    def ranked(self, count: int, region: Optional[str] = None) -> List[LatencyMeasurement]:
        """Top ``count`` measurements of the final latency ranking (fewer if the ranking is shorter)."""

        if count < 1:
            raise ValueError(f"count must be >= 1, got {count}")
        ranking = self.prober.probe(self.catalog.fetch(self.capability_type, region))
        return ranking[:count]

    def best(self, count: int, region: Optional[str] = None) -> List[RelayDescriptor]:
        return [m.relay for m in self.ranked(count, region)]
