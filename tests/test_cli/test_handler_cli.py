"""Tests for the command-line handler."""

import io
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import main
from renewal.errors import LockHeld
from renewal.history import RunHistory
from renewal.lock import RunLock

FAKE_SSH = """#!{python}
import sys
from pathlib import Path

action = sys.argv[-1]
if action == "check":
    print("Found the following certs:")
    print("    Expiry Date: {expiry} (VALID)")
elif action == "renew":
    Path({marker!r}).write_text("renewed")
else:
    sys.stderr.write("ERROR: unsupported command\\n")
    sys.exit(1)
"""


def make_rule(remark: str, kind: str = "dnat", enabled: str = "") -> str:
    fields = [""] * 40
    fields[0] = "1"
    fields[1] = "ACCEPT"
    fields[3] = enabled
    fields[17] = remark
    fields[32] = kind
    return ",".join(fields)


class TestHandlerCli(unittest.TestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)
        self.geo_path = self.dir / "locationblock"
        self.rules_path = self.dir / "config"
        self.marker = self.dir / "renewed"
        self.lock_path = self.dir / "run.lock"
        self.history_path = self.dir / "history.json"
        self.geo_path.write_text("LOCATIONBLOCK_ENABLED=on\n")
        self.rules_path.write_text(make_rule("nextcloud-http") + "\n")

        patcher = patch.multiple(
            "config.settings",
            LOCATION_BLOCK_FILE=str(self.geo_path),
            PORT_FORWARD_RULES_FILE=str(self.rules_path),
            FIREWALL_RELOAD_COMMAND=[sys.executable, "-c", "pass"],
            SSH_BINARY=str(self.dir / "ssh"),
            RUN_LOCK_PATH=str(self.lock_path),
            RUN_HISTORY_PATH=str(self.history_path),
        )
        patcher.start()
        self.addCleanup(patcher.stop)
        logging_patch = patch("main.setup_logging")
        logging_patch.start()
        self.addCleanup(logging_patch.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def write_fake_ssh(self, days_left: int):
        expiry = (datetime.now(timezone.utc) + timedelta(days=days_left)).strftime("%Y-%m-%d")
        script = self.dir / "ssh"
        script.write_text(FAKE_SSH.format(
            python=sys.executable, expiry=expiry, marker=str(self.marker),
        ))
        script.chmod(0o755)

    def test_help_exits_zero(self):
        out = io.StringIO()
        with redirect_stdout(out), self.assertRaises(SystemExit) as ctx:
            main.main(["--help"])
        self.assertEqual(ctx.exception.code, 0)
        self.assertIn("rule_label", out.getvalue())

    def test_missing_argument_exits_one(self):
        err = io.StringIO()
        with redirect_stderr(err), self.assertRaises(SystemExit) as ctx:
            main.main(["certbot", "10.0.0.5"])
        self.assertEqual(ctx.exception.code, 1)
        self.assertIn("usage", err.getvalue())

    def test_extra_argument_exits_one(self):
        with redirect_stderr(io.StringIO()), self.assertRaises(SystemExit) as ctx:
            main.main(["certbot", "10.0.0.5", "nextcloud-http", "extra"])
        self.assertEqual(ctx.exception.code, 1)

    @patch("main.build_orchestrator")
    @patch("main.os.geteuid", return_value=1000)
    def test_requires_root(self, _geteuid, mock_build):
        err = io.StringIO()
        with redirect_stderr(err):
            code = main.main(["certbot", "10.0.0.5", "nextcloud-http"])
        self.assertEqual(code, 1)
        self.assertIn("root", err.getvalue())
        mock_build.assert_not_called()

    @patch("main.os.geteuid", return_value=0)
    def test_due_run_renews_and_restores(self, _geteuid):
        self.write_fake_ssh(days_left=10)
        rules_before = self.rules_path.read_bytes()
        code = main.main(["certbot", "10.0.0.5", "nextcloud-http"])
        self.assertEqual(code, 0)
        self.assertTrue(self.marker.exists())
        self.assertEqual(self.rules_path.read_bytes(), rules_before)
        self.assertEqual(self.geo_path.read_text(), "LOCATIONBLOCK_ENABLED=on\n")
        entry = RunHistory(self.history_path).last()
        self.assertTrue(entry["renewal_succeeded"])

    @patch("main.os.geteuid", return_value=0)
    def test_not_due_run_skips(self, _geteuid):
        self.write_fake_ssh(days_left=45)
        rules_before = self.rules_path.read_bytes()
        code = main.main(["certbot", "10.0.0.5", "nextcloud-http"])
        self.assertEqual(code, 0)
        self.assertFalse(self.marker.exists())
        self.assertEqual(self.rules_path.read_bytes(), rules_before)
        self.assertEqual(RunHistory(self.history_path).last()["decision"], "not_due")

    @patch("main.os.geteuid", return_value=0)
    def test_unknown_rule_exits_one(self, _geteuid):
        self.write_fake_ssh(days_left=10)
        code = main.main(["certbot", "10.0.0.5", "no-such-rule"])
        self.assertEqual(code, 1)
        self.assertFalse(self.marker.exists())
        self.assertEqual(self.geo_path.read_text(), "LOCATIONBLOCK_ENABLED=on\n")

    @patch("main.os.geteuid", return_value=0)
    def test_lock_held_exits_one(self, _geteuid):
        self.write_fake_ssh(days_left=10)
        with RunLock(self.lock_path):
            code = main.main(["certbot", "10.0.0.5", "nextcloud-http"])
        self.assertEqual(code, 1)
        self.assertFalse(self.marker.exists())
        self.assertIsNone(RunHistory(self.history_path).last())

    @patch("main.os.geteuid", return_value=0)
    def test_remark_starting_with_dash_after_separator(self, _geteuid):
        self.rules_path.write_text(make_rule("-web80") + "\n")
        self.write_fake_ssh(days_left=10)
        code = main.main(["--", "certbot", "10.0.0.5", "-web80"])
        self.assertEqual(code, 0)
        self.assertTrue(self.marker.exists())
        self.assertEqual(self.rules_path.read_text(), make_rule("-web80") + "\n")

    def test_dash_prefixed_host_rejected(self):
        with redirect_stderr(io.StringIO()), self.assertRaises(SystemExit) as ctx:
            main.main(["--", "certbot", "-oProxyCommand=x", "web"])
        self.assertEqual(ctx.exception.code, 1)

    @patch("main.os.geteuid", return_value=0)
    def test_history_recorded_while_lock_held(self, _geteuid):
        self.write_fake_ssh(days_left=45)
        lock_states = []

        def check_lock(outcome):
            with self.assertRaises(LockHeld):
                RunLock(self.lock_path).acquire()
            lock_states.append(outcome.decision)

        with patch("main.record_history", side_effect=check_lock):
            code = main.main(["certbot", "10.0.0.5", "nextcloud-http"])
        self.assertEqual(code, 0)
        self.assertEqual(lock_states, ["not_due"])


if __name__ == "__main__":
    unittest.main()
