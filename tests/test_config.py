"""
Configuration validation and environment override tests.

Run with: python -m unittest tests.test_config
"""

import unittest

from relayguard.config import CONFIG, load_config, policy_from_config, validate_config
from relayguard.exceptions import ConfigError
from relayguard.models import SelectionPolicy
from relayguard.prober import ProbeOptions


class TestDefaults(unittest.TestCase):
    def test_defaults_validate(self):
        cfg = load_config(environ={})
        validate_config(cfg)
        self.assertEqual(cfg["PROBE_PORT"], 443)
        self.assertEqual(cfg["PROBE_TIMEOUT_S"], 0.5)
        self.assertEqual(cfg["REFINE_TIMEOUT_S"], 2.0)
        self.assertEqual(cfg["REFINE_ATTEMPTS"], 3)
        self.assertEqual(cfg["PROBE_WORKER_CAP"], 50)
        self.assertEqual(cfg["MONITOR_INTERVAL_S"], 300.0)
        self.assertFalse(cfg["USE_SOCKS5_PROXY"])
        self.assertEqual(cfg["SOCKS5_PROXY_PORT"], 1080)
        self.assertFalse(cfg["ENABLE_AUTO_START"])
        self.assertIn("{account}", cfg["KEY_UPLOAD_URL"])

    def test_probe_options_follow_config(self):
        options = ProbeOptions.from_config(load_config(environ={"PROBE_WORKER_CAP": "8"}))
        self.assertEqual(options.worker_cap, 8)
        self.assertEqual(options.coarse_timeout, 0.5)

    def test_load_config_returns_independent_copy(self):
        cfg = load_config(environ={})
        cfg["INTERFACE_NAME"] = "wg9"
        self.assertNotEqual(load_config(environ={})["INTERFACE_NAME"], "wg9")
        self.assertIsNot(cfg, CONFIG)


class TestEnvOverrides(unittest.TestCase):
    def test_typed_overrides(self):
        cfg = load_config(environ={
            "PROBE_PORT": "8443",
            "PROBE_TIMEOUT_S": "0.25",
            "ENABLE_MULTIHOP": "yes",
            "USE_LATENCY_BASED_SELECTION": "off",
            "DNS_SERVERS": "10.64.0.1, 1.1.1.1",
            "COUNTRY_CODE": "ch",
        })
        self.assertEqual(cfg["PROBE_PORT"], 8443)
        self.assertEqual(cfg["PROBE_TIMEOUT_S"], 0.25)
        self.assertTrue(cfg["ENABLE_MULTIHOP"])
        self.assertFalse(cfg["USE_LATENCY_BASED_SELECTION"])
        self.assertEqual(cfg["DNS_SERVERS"], ["10.64.0.1", "1.1.1.1"])
        self.assertEqual(cfg["COUNTRY_CODE"], "ch")

    def test_bad_literals_raise_config_error(self):
        for env in ({"PROBE_PORT": "https"}, {"ENABLE_KILL_SWITCH": "maybe"}, {"PROBE_TIMEOUT_S": "fast"}):
            with self.subTest(env=env):
                with self.assertRaises(ConfigError):
                    load_config(environ=env)

    def test_unknown_variables_ignored(self):
        self.assertNotIn("NOT_A_KEY", load_config(environ={"NOT_A_KEY": "1"}))


class TestValidation(unittest.TestCase):
    def assertRejected(self, **overrides):
        cfg = {**load_config(environ={}), **overrides}
        with self.assertRaises(ConfigError):
            validate_config(cfg)

    def test_missing_key(self):
        cfg = load_config(environ={})
        del cfg["STATUS_URL"]
        with self.assertRaises(ConfigError) as ctx:
            validate_config(cfg)
        self.assertIn("STATUS_URL", str(ctx.exception))

    def test_range_and_type_violations(self):
        self.assertRejected(PROBE_PORT=0)
        self.assertRejected(WIREGUARD_PORT=70000)
        self.assertRejected(PROBE_PORT=True)
        self.assertRejected(PROBE_TIMEOUT_S=0)
        self.assertRejected(MONITOR_INTERVAL_S="300")
        self.assertRejected(PROBE_WORKER_CAP=0)
        self.assertRejected(REFINE_FRACTION=1.5)
        self.assertRejected(REFINE_ATTEMPTS=0)
        self.assertRejected(INTERFACE_NAME="a-very-long-interface-name")
        self.assertRejected(STATUS_URL="ftp://example.invalid/json")
        self.assertRejected(DNS_SERVERS=["not-an-ip"])
        self.assertRejected(LOCAL_NETWORK_CIDR="192.168.1.0/99")
        self.assertRejected(POST_UP=[1, 2])
        self.assertRejected(SOCKS5_PROXY_PORT=0)
        self.assertRejected(KEY_UPLOAD_URL="https://api.example.invalid/{acct}/key")
        self.assertRejected(KEY_UPLOAD_URL="https://api.example.invalid/{0}/key")

    def test_integer_seconds_accepted(self):
        validate_config({**load_config(environ={}), "MONITOR_INTERVAL_S": 60})


class TestPolicyFromConfig(unittest.TestCase):
    def test_defaults_rank_by_latency(self):
        self.assertEqual(policy_from_config(load_config(environ={})), SelectionPolicy())

    def test_named_server_and_region(self):
        cfg = load_config(environ={"SERVER_NAME": "se-mma-wg-001", "COUNTRY_CODE": "se", "ENABLE_MULTIHOP": "1"})
        policy = policy_from_config(cfg)
        self.assertEqual(policy.explicit_hostname, "se-mma-wg-001")
        self.assertEqual(policy.region_code, "se")
        self.assertTrue(policy.multi_hop)


if __name__ == "__main__":
    unittest.main()
