"""
Selection policy tests: precedence, failures and multi-hop.

Run with: python -m unittest tests.test_selector
"""

import unittest

from relayguard.exceptions import NoMatch, NoReachableRelay, NoSelectionPolicy, RelayNotFound
from relayguard.models import SelectionPolicy
from relayguard.prober import LatencyProber, ProbeOptions
from relayguard.selector import ServerSelector

from tests.support import FakeCatalog, SimulatedNetwork, make_relay


class TestServerSelector(unittest.TestCase):
    def setUp(self):
        self.se = [make_relay(i, "se") for i in range(1, 4)]
        self.de = [make_relay(i + 10, "de") for i in range(1, 4)]
        self.openvpn = make_relay(9, "se", capability="openvpn")
        # de[0] is the fastest overall, se[2] the fastest in se
        latencies = {
            self.se[0].ipv4_endpoint: 0.050,
            self.se[1].ipv4_endpoint: 0.040,
            self.se[2].ipv4_endpoint: 0.030,
            self.de[0].ipv4_endpoint: 0.010,
            self.de[1].ipv4_endpoint: 0.060,
            self.de[2].ipv4_endpoint: 0.070,
        }
        self.net = SimulatedNetwork(latencies)
        self.catalog = FakeCatalog(self.se + self.de + [self.openvpn])
        self.selector = ServerSelector(self.catalog, LatencyProber(self.net, ProbeOptions()), "wireguard")

    def test_explicit_hostname_wins_without_probing(self):
        policy = SelectionPolicy(explicit_hostname=self.se[0].hostname, region_code="de", use_latency_ranking=True)

        selection = self.selector.select(policy)

        self.assertEqual(selection.primary, self.se[0])
        self.assertIsNone(selection.second_hop)
        self.assertEqual(self.net.calls, [])

    def test_unknown_hostname_is_not_found(self):
        with self.assertRaises(RelayNotFound) as ctx:
            self.selector.select(SelectionPolicy(explicit_hostname="xx-nowhere-wg-001"))
        self.assertIn("xx-nowhere-wg-001", str(ctx.exception))

    def test_hostname_of_other_capability_is_not_found(self):
        with self.assertRaises(RelayNotFound):
            self.selector.select(SelectionPolicy(explicit_hostname=self.openvpn.hostname))

    def test_region_restricts_probing_to_that_region(self):
        selection = self.selector.select(SelectionPolicy(region_code="se"))

        self.assertEqual(selection.primary, self.se[2])
        probed = {call[0] for call in self.net.calls}
        self.assertEqual(probed, {r.ipv4_endpoint for r in self.se})
        self.assertEqual(self.catalog.fetches, [("wireguard", "se")])

    def test_region_beats_global_latency(self):
        selection = self.selector.select(SelectionPolicy(region_code="se", use_latency_ranking=True))
        self.assertEqual(selection.primary.country_code, "se")

    def test_global_latency_ranking(self):
        selection = self.selector.select(SelectionPolicy())
        self.assertEqual(selection.primary, self.de[0])

    def test_no_policy_fails_without_probing(self):
        with self.assertRaises(NoSelectionPolicy):
            self.selector.select(SelectionPolicy(use_latency_ranking=False))
        self.assertEqual(self.net.calls, [])
        self.assertEqual(self.catalog.fetches, [])

    def test_empty_region_propagates_catalog_error(self):
        with self.assertRaises(NoMatch):
            self.selector.select(SelectionPolicy(region_code="jp"))

    def test_unreachable_region_propagates_probe_error(self):
        self.net.latencies.update({r.ipv4_endpoint: None for r in self.se})
        with self.assertRaises(NoReachableRelay):
            self.selector.select(SelectionPolicy(region_code="se"))

    def test_rounds_do_not_share_state(self):
        first = self.selector.select(SelectionPolicy())
        second = self.selector.select(SelectionPolicy())

        self.assertEqual(first, second)
        self.assertEqual(len(self.catalog.fetches), 2)

    def test_multi_hop_repeats_branch_and_may_pick_same_relay(self):
        policy = SelectionPolicy(region_code="se", multi_hop=True)

        with self.assertLogs("relayguard.selector", level="WARNING") as logs:
            selection = self.selector.select(policy)

        self.assertEqual(selection.primary, self.se[2])
        self.assertEqual(selection.second_hop, self.se[2])
        self.assertEqual(selection.relays, (self.se[2], self.se[2]))
        self.assertEqual(len(self.catalog.fetches), 2)
        self.assertTrue(any("same relay" in line for line in logs.output))

    def test_multi_hop_with_explicit_hostname(self):
        policy = SelectionPolicy(explicit_hostname=self.de[1].hostname, multi_hop=True)

        selection = self.selector.select(policy)

        self.assertEqual(selection.primary, self.de[1])
        self.assertEqual(selection.second_hop, self.de[1])
        self.assertEqual(self.net.calls, [])

    def test_best_returns_top_of_ranking(self):
        self.assertEqual(self.selector.best(2, "se"), [self.se[2], self.se[1]])

    def test_best_rejects_non_positive_count(self):
        with self.assertRaises(ValueError):
            self.selector.best(0)


if __name__ == "__main__":
    unittest.main()
