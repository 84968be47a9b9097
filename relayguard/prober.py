"""
Concurrent two-phase latency probing.

Coarse phase: one short TCP connect per candidate, at most ``worker_cap`` in
flight. Survivors are ranked and the fastest slice is re-measured in the
refined phase with several longer-timeout attempts each; the averaged
refined latencies form the final ranking.

The coarse executor is fully drained before the refined phase begins, so no
relay is re-measured before every coarse outcome is known.
"""

from __future__ import annotations

import math
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from relayguard.config import CONFIG
from relayguard.exceptions import NoneSurvivedRefinement, NoReachableRelay
from relayguard.logging_utils import METRICS, get_logger
from relayguard.models import LatencyMeasurement, RelayDescriptor

logger = get_logger("relayguard.prober")

# (host, port, timeout_s) -> elapsed seconds; raises OSError when unreachable
ProbeFn = Callable[[str, int, float], float]


def tcp_ping(host: str, port: int, timeout: float) -> float:
    """Time a TCP connection establishment to ``host:port``."""

    start = time.perf_counter()
    with socket.create_connection((host, port), timeout=timeout):
        return time.perf_counter() - start


@dataclass(frozen=True)
class ProbeOptions:
    port: int = 443
    coarse_timeout: float = 0.5
    refined_timeout: float = 2.0
    refined_attempts: int = 3
    worker_cap: int = 50
    refine_fraction: float = 0.1
    refine_floor: int = 5

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, object]] = None) -> "ProbeOptions":
        cfg = CONFIG if cfg is None else cfg
        return cls(
            port=int(cfg["PROBE_PORT"]),
            coarse_timeout=float(cfg["PROBE_TIMEOUT_S"]),
            refined_timeout=float(cfg["REFINE_TIMEOUT_S"]),
            refined_attempts=int(cfg["REFINE_ATTEMPTS"]),
            worker_cap=int(cfg["PROBE_WORKER_CAP"]),
            refine_fraction=float(cfg["REFINE_FRACTION"]),
            refine_floor=int(cfg["REFINE_FLOOR"]),
        )


def refinement_size(survivors: int, fraction: float = 0.1, floor: int = 5) -> int:
    """max(floor, ceil(fraction * survivors)), never more than ``survivors``."""

    if survivors <= 0:
        return 0
    return min(survivors, max(floor, math.ceil(fraction * survivors)))


def rank(measurements: Iterable[LatencyMeasurement]) -> List[LatencyMeasurement]:
    # sorted() is stable: equal latencies keep their incoming order
    return sorted(measurements, key=lambda m: m.latency)


class LatencyProber:
    """Ranks relays by measured connect latency."""

    def __init__(self, probe_fn: Optional[ProbeFn] = None, options: Optional[ProbeOptions] = None) -> None:
        self._probe_fn = probe_fn or tcp_ping
        self.options = options or ProbeOptions.from_config()

    def _attempt(self, relay: RelayDescriptor, port: int, timeout: float) -> Optional[float]:
        try:
            return self._probe_fn(relay.ipv4_endpoint, port, timeout)
        except OSError as exc:
            logger.debug(
                "probe failed",
                extra={"relay": relay.hostname, "endpoint": relay.ipv4_endpoint, "error": str(exc)},
            )
            return None

    def _attempt_many(self, relay: RelayDescriptor, port: int, timeout: float, attempts: int) -> Optional[float]:
        samples = []
        for _ in range(attempts):
            latency = self._attempt(relay, port, timeout)
            if latency is not None:
                samples.append(latency)
        if not samples:
            return None
        return sum(samples) / len(samples)

    def coarse(self, relays: Sequence[RelayDescriptor], opts: ProbeOptions) -> List[LatencyMeasurement]:
        """Single probe per relay; unreachable relays are left out."""

        if not relays:
            return []
        workers = max(1, min(opts.worker_cap, len(relays)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="probe-coarse") as pool:
            futures = [pool.submit(self._attempt, relay, opts.port, opts.coarse_timeout) for relay in relays]
            outcomes = [f.result() for f in futures]

        results = [
            LatencyMeasurement(relay=relay, latency=latency)
            for relay, latency in zip(relays, outcomes)
            if latency is not None
        ]
        METRICS.counter("probe.coarse_ok").inc(len(results))
        METRICS.counter("probe.coarse_fail").inc(len(relays) - len(results))
        return results

    def refine(self, shortlist: Sequence[LatencyMeasurement], opts: ProbeOptions) -> List[LatencyMeasurement]:
        """Re-measure ``shortlist`` (already ranked) and average the successes."""

        if not shortlist:
            return []
        workers = max(1, min(opts.worker_cap, len(shortlist)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="probe-refine") as pool:
            futures = [
                pool.submit(self._attempt_many, m.relay, opts.port, opts.refined_timeout, opts.refined_attempts)
                for m in shortlist
            ]
            averages = [f.result() for f in futures]

        results = [
            LatencyMeasurement(relay=m.relay, latency=avg)
            for m, avg in zip(shortlist, averages)
            if avg is not None
        ]
        METRICS.counter("probe.refined_ok").inc(len(results))
        return rank(results)

    def probe(self, relays: Sequence[RelayDescriptor], options: Optional[ProbeOptions] = None) -> List[LatencyMeasurement]:
        """Return reachable relays ranked ascending by refined latency.

        Raises NoReachableRelay when no candidate answers the coarse phase and
        NoneSurvivedRefinement when every shortlisted relay fails all refined
        attempts.
        """

        opts = options or self.options
        relays = list(relays)
        started = time.monotonic()

        survivors = rank(self.coarse(relays, opts))
        if not survivors:
            raise NoReachableRelay(f"none of {len(relays)} candidate relays answered")

        size = refinement_size(len(survivors), opts.refine_fraction, opts.refine_floor)
        shortlist = survivors[:size]
        logger.info(
            "coarse probe phase complete",
            extra={"candidates": len(relays), "reachable": len(survivors), "shortlist": size},
        )

        ranking = self.refine(shortlist, opts)
        if not ranking:
            raise NoneSurvivedRefinement(f"all {size} shortlisted relays failed refinement")

        best = ranking[0]
        METRICS.gauge("probe.best_latency_ms").set(best.latency_ms)
        logger.info(
            "refined probe phase complete",
            extra={
                "ranked": len(ranking),
                "best": best.relay.hostname,
                "best_ms": best.latency_ms,
                "elapsed_s": round(time.monotonic() - started, 3),
            },
        )
        return ranking
