"""Tests for the forced-command SSH client."""

import subprocess
import unittest
from unittest.mock import patch

from renewal.errors import AuthRejected, CommandFailed, RemoteError, Unreachable
from renewal.remote import RemoteAction, RemoteActionClient, RemoteResult


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(["ssh"], returncode, stdout, stderr)


class TestRemoteResult(unittest.TestCase):

    def test_output_combines_streams(self):
        result = RemoteResult(RemoteAction.CHECK, 0, stdout="out", stderr="err")
        self.assertEqual(result.output, "out\nerr")
        self.assertTrue(result.success)

    def test_output_skips_empty_stream(self):
        result = RemoteResult(RemoteAction.RENEW, 1, stdout="", stderr="failed")
        self.assertEqual(result.output, "failed")
        self.assertFalse(result.success)


class TestRemoteActionClient(unittest.TestCase):

    def setUp(self):
        self.client = RemoteActionClient(
            "certbot", "10.0.0.5", connect_timeout=5,
            timeouts={RemoteAction.CHECK: 30, RemoteAction.RENEW: 300},
        )

    def test_command_sends_only_selector(self):
        cmd = self.client.command_for(RemoteAction.RENEW)
        self.assertEqual(cmd[0], "ssh")
        self.assertEqual(cmd[-2:], ["certbot@10.0.0.5", "renew"])
        self.assertIn("BatchMode=yes", cmd)
        self.assertIn("StrictHostKeyChecking=accept-new", cmd)
        self.assertIn("ConnectTimeout=5", cmd)

    def test_unknown_selector_rejected(self):
        with self.assertRaises(ValueError):
            self.client.command_for("reboot")

    @patch("renewal.remote.subprocess.run")
    def test_check_returns_output(self, mock_run):
        mock_run.return_value = completed(0, "Expiry Date: 2025-03-01 (VALID: 30 days)\n")
        result = self.client.invoke(RemoteAction.CHECK)
        self.assertIn("Expiry Date", result.output)
        self.assertEqual(result.action, RemoteAction.CHECK)
        self.assertEqual(mock_run.call_args.kwargs["timeout"], 30)
        self.assertEqual(mock_run.call_args[0][0][-1], "check")

    @patch("renewal.remote.subprocess.run")
    def test_renew_uses_its_own_timeout(self, mock_run):
        mock_run.return_value = completed(0, "Congratulations, all renewals succeeded")
        self.client.invoke(RemoteAction.RENEW)
        self.assertEqual(mock_run.call_args.kwargs["timeout"], 300)

    @patch("renewal.remote.subprocess.run")
    def test_auth_rejected(self, mock_run):
        mock_run.return_value = completed(255, "", "certbot@10.0.0.5: Permission denied (publickey).\n")
        with self.assertRaises(AuthRejected) as ctx:
            self.client.invoke(RemoteAction.CHECK)
        self.assertIn("Permission denied", ctx.exception.output)
        self.assertEqual(ctx.exception.returncode, 255)

    @patch("renewal.remote.subprocess.run")
    def test_unreachable(self, mock_run):
        mock_run.return_value = completed(255, "", "ssh: connect to host 10.0.0.5 port 22: No route to host\n")
        with self.assertRaises(Unreachable):
            self.client.invoke(RemoteAction.CHECK)

    @patch("renewal.remote.subprocess.run")
    def test_remote_command_failure_keeps_output(self, mock_run):
        mock_run.return_value = completed(1, "Attempting to renew cert\n", "Challenge failed for domain\n")
        with self.assertRaises(CommandFailed) as ctx:
            self.client.invoke(RemoteAction.RENEW)
        self.assertIn("Attempting to renew", ctx.exception.output)
        self.assertIn("Challenge failed", ctx.exception.output)

    @patch("renewal.remote.subprocess.run")
    def test_rejected_selector_is_remote_error(self, mock_run):
        mock_run.return_value = completed(1, "", "ERROR: unsupported command\n")
        with self.assertRaises(RemoteError):
            self.client.invoke(RemoteAction.CHECK)

    @patch("renewal.remote.subprocess.run")
    def test_timeout_is_unreachable(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired("ssh", 30, output=b"partial")
        with self.assertRaises(Unreachable) as ctx:
            self.client.invoke(RemoteAction.CHECK)
        self.assertIn("timed out", str(ctx.exception))
        self.assertEqual(ctx.exception.output, "partial")

    @patch("renewal.remote.subprocess.run")
    def test_missing_ssh_binary(self, mock_run):
        mock_run.side_effect = FileNotFoundError("ssh")
        with self.assertRaises(Unreachable):
            self.client.invoke(RemoteAction.CHECK)


if __name__ == "__main__":
    unittest.main()
