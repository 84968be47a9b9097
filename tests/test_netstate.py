"""
Network state snapshot/rollback and command runner tests.

Run with: python -m unittest tests.test_netstate
"""

import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from relayguard.exceptions import NetworkStateError
from relayguard.netstate import SnapshotNetworkState
from relayguard.process import run_command, split_command


class TestSnapshotNetworkState(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.resolv = Path(tmp.name) / "resolv.conf"
        self.resolv.write_text("nameserver 192.168.1.1\n", encoding="utf-8")
        self.commands = []

    def runner(self, argv):
        self.commands.append(list(argv))
        return ""

    def test_rollback_restores_resolver_and_runs_reverts(self):
        state = SnapshotNetworkState(self.resolv, ["ip route del default dev wg0"], runner=self.runner)
        self.resolv.write_text("nameserver 10.64.0.1\n", encoding="utf-8")

        state.rollback()

        self.assertEqual(self.resolv.read_text(encoding="utf-8"), "nameserver 192.168.1.1\n")
        self.assertEqual(self.commands, [["ip", "route", "del", "default", "dev", "wg0"]])

    def test_unreadable_resolver_fails_at_snapshot(self):
        with self.assertRaises(NetworkStateError):
            SnapshotNetworkState(self.resolv.parent / "missing.conf")

    def test_every_step_attempted_and_failures_reported(self):
        def flaky(argv):
            self.commands.append(list(argv))
            if argv[0] == "false":
                raise NetworkStateError("false exited with status 1")
            return ""

        state = SnapshotNetworkState(self.resolv, ["false", "ip link del wg0"], runner=flaky)

        with self.assertRaises(NetworkStateError) as ctx:
            state.rollback()

        self.assertEqual(len(self.commands), 2)
        self.assertIn("false", str(ctx.exception))

    def test_unbalanced_quotes_reported(self):
        state = SnapshotNetworkState(self.resolv, ["echo 'oops"], runner=self.runner)
        with self.assertRaises(NetworkStateError):
            state.rollback()


class TestRunCommand(unittest.TestCase):
    def test_output_returned(self):
        done = subprocess.CompletedProcess(["wg-quick"], 0, stdout="ok\n", stderr="")
        with mock.patch("relayguard.process.subprocess.run", return_value=done):
            self.assertEqual(run_command(["wg-quick", "up", "wg0"]), "ok")

    def test_command_logged_as_structured_field(self):
        done = subprocess.CompletedProcess(["wg-quick"], 0, stdout="", stderr="")
        with mock.patch("relayguard.process.subprocess.run", return_value=done):
            with self.assertLogs("relayguard.process", "DEBUG") as logs:
                run_command(["wg-quick", "up", "wg 0"])
        record = logs.records[0]
        self.assertEqual(record.getMessage(), "running command")
        self.assertEqual(record.cmd, "wg-quick up 'wg 0'")

    def test_non_zero_exit_raises_given_error_with_output(self):
        done = subprocess.CompletedProcess(["wg-quick"], 1, stdout="", stderr="RTNETLINK answers: File exists\n")
        with mock.patch("relayguard.process.subprocess.run", return_value=done):
            with self.assertRaises(NetworkStateError) as ctx:
                run_command(["wg-quick", "up", "wg0"], error=NetworkStateError)
        self.assertIn("File exists", str(ctx.exception))
        self.assertIn("status 1", str(ctx.exception))

    def test_timeout_and_missing_binary(self):
        with mock.patch("relayguard.process.subprocess.run", side_effect=subprocess.TimeoutExpired("wg-quick", 1)):
            with self.assertRaises(RuntimeError):
                run_command(["wg-quick", "down", "wg0"], timeout=1)
        with mock.patch("relayguard.process.subprocess.run", side_effect=FileNotFoundError("wg-quick")):
            with self.assertRaises(RuntimeError):
                run_command(["wg-quick", "down", "wg0"])

    def test_split_command(self):
        self.assertEqual(split_command("ip route add 10.0.0.0/8 via '192.168.1.1'"),
                         ["ip", "route", "add", "10.0.0.0/8", "via", "192.168.1.1"])


if __name__ == "__main__":
    unittest.main()
