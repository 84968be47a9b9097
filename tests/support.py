"""Shared fakes for the relayguard tests: synthetic relays, probes and collaborators."""

import threading
from typing import Dict, List, Optional, Sequence, Union

from relayguard.exceptions import NetworkStateError, NoMatch, TunnelError
from relayguard.models import RelayDescriptor, Selection


def make_relay(index: int, country: str = "se", capability: str = "wireguard") -> RelayDescriptor:
    return RelayDescriptor(
        hostname=f"{country}-test-wg-{index:03d}",
        ipv4_endpoint=f"10.{index // 250}.{index % 250}.1",
        country_code=country,
        public_key=f"pubkey-{index}",
        capability_type=capability,
    )


def relay_record(relay: RelayDescriptor, country_name: str = "") -> dict:
    return {
        "hostname": relay.hostname,
        "ipv4_addr_in": relay.ipv4_endpoint,
        "country_code": relay.country_code,
        "country_name": country_name or relay.country_code.upper(),
        "pubkey": relay.public_key,
        "type": relay.capability_type,
    }


Latency = Union[float, None, Sequence[Optional[float]]]


class SimulatedNetwork:
    """Probe function backed by a table of endpoint latencies.

    A float answers every probe with that latency; None never answers; a
    sequence is consumed one entry per probe (None entries fail) and the last
    entry repeats once exhausted.
    """

    def __init__(self, latencies: Dict[str, Latency]) -> None:
        self.latencies = latencies
        self.calls: List[tuple] = []
        self._cursor: Dict[str, int] = {}
        self._lock = threading.Lock()

    def __call__(self, host: str, port: int, timeout: float) -> float:
        with self._lock:
            self.calls.append((host, port, timeout))
            value = self.latencies.get(host)
            if isinstance(value, (list, tuple)):
                index = self._cursor.get(host, 0)
                self._cursor[host] = index + 1
                value = value[min(index, len(value) - 1)]
        if value is None:
            raise ConnectionRefusedError(f"{host}:{port} refused")
        return value

    def calls_for(self, host: str) -> int:
        with self._lock:
            return sum(1 for call in self.calls if call[0] == host)


class FakeCatalog:
    def __init__(self, relays: Sequence[RelayDescriptor]) -> None:
        self.relays = list(relays)
        self.fetches: List[tuple] = []

    def fetch(self, capability_type: str, region: Optional[str] = None) -> List[RelayDescriptor]:
        self.fetches.append((capability_type, region))
        matched = [r for r in self.relays if r.capability_type.lower() == capability_type.lower()]
        if region:
            matched = [r for r in matched if r.country_code.lower() == region.lower()]
        if not matched:
            raise NoMatch("no relays")
        return matched


class FakeOracle:
    """Replays a script of outcomes; True/False answer, exceptions are raised.

    The last entry repeats once the script is exhausted.
    """

    def __init__(self, script: Sequence[object]) -> None:
        self.script = list(script)
        self.queries = 0

    def is_secure(self) -> bool:
        outcome = self.script[min(self.queries, len(self.script) - 1)]
        self.queries += 1
        if isinstance(outcome, BaseException):
            raise outcome
        return bool(outcome)


class FakeDriver:
    def __init__(self, fail_up: bool = False, fail_down: bool = False) -> None:
        self.fail_up = fail_up
        self.fail_down = fail_down
        self.calls: List[tuple] = []
        self.is_up = False
        self.overlapping_up = False

    def up(self, relay: RelayDescriptor, exit_relay: Optional[RelayDescriptor] = None) -> None:
        self.calls.append(("up", relay.hostname, exit_relay.hostname if exit_relay else None))
        if self.is_up:
            self.overlapping_up = True
        if self.fail_up:
            raise TunnelError("wg-quick up wg0 exited with status 1")
        self.is_up = True

    def down(self) -> None:
        self.calls.append(("down",))
        if self.fail_down:
            raise TunnelError("wg-quick down wg0 exited with status 1")
        self.is_up = False

    @property
    def downs(self) -> int:
        return sum(1 for call in self.calls if call[0] == "down")

    @property
    def ups(self) -> int:
        return sum(1 for call in self.calls if call[0] == "up")


class FakeNetwork:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.rollbacks = 0

    def rollback(self) -> None:
        self.rollbacks += 1
        if self.fail:
            raise NetworkStateError("resolver restore failed")


class FakeSelector:
    def __init__(self, outcomes: Sequence[object]) -> None:
        self.outcomes = list(outcomes)
        self.rounds = 0

    def select(self, policy) -> Selection:
        outcome = self.outcomes[min(self.rounds, len(self.outcomes) - 1)]
        self.rounds += 1
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome
