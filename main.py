#!/usr/bin/env python3
"""
Gateway Certificate Renewal Handler - Main Entry Point.

Usage:
    python main.py <ssh_user> <target_host> <rule_label>
    python main.py -- <ssh_user> <target_host> <rule_label starting with ->

Checks the certificate of a host behind the gateway and, when it is due,
temporarily enables the host's port 80 forward rule and disables the
location block so the HTTP-01 challenge can complete. Both are restored
afterwards, whatever happens. Must run as root; meant to be run by cron.
"""

import argparse
import logging
import logging.handlers
import os
import sys

from dotenv import load_dotenv
load_dotenv()  # Load .env file if present

from config import settings
from firewall.controls import GeoBlockFilter, InboundForwardRule
from firewall.store import ConfigStore
from renewal.errors import LockHeld, PrivilegeError
from renewal.expiry import ExpiryPolicy
from renewal.history import RunHistory
from renewal.lock import RunLock
from renewal.orchestrator import WindowOrchestrator
from renewal.remote import RemoteAction, RemoteActionClient

logger = logging.getLogger("renewal.handler")

DESCRIPTION = (
    "Automate Let's Encrypt certificate renewal for a server behind the gateway. "
    "It checks the certificate's expiry date, and if renewal is needed, it "
    "temporarily modifies firewall rules, runs certbot on the remote server via "
    "SSH, and safely restores all security settings afterwards."
)


class HandlerArgumentParser(argparse.ArgumentParser):
    """Argument parser that reports usage errors with exit status 1."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"ERROR: {message}. Use -h or --help for usage information.\n")


def build_parser():
    """Build the argument parser."""
    parser = HandlerArgumentParser(
        description=DESCRIPTION,
        epilog="A remark that starts with '-' must follow '--', "
               "e.g. handler -- certbot 10.0.0.5 -web80",
    )
    parser.add_argument(
        "ssh_user", help="The username on the target server to connect with."
    )
    parser.add_argument(
        "target_host", help="The address of the target server behind the gateway."
    )
    parser.add_argument(
        "rule_label",
        help="The unique remark of the port 80 DNAT rule in the gateway WUI.",
    )
    return parser


def setup_logging() -> None:
    """Log to stderr, plus the log file and syslog when configured."""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.LOG_FILE:
        os.makedirs(os.path.dirname(settings.LOG_FILE) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(settings.LOG_FILE, mode="a", encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))

    if settings.LOG_SYSLOG and os.path.exists("/dev/log"):
        syslog = logging.handlers.SysLogHandler(address="/dev/log")
        syslog.setFormatter(
            logging.Formatter(f"{settings.LOG_TAG}: [%(levelname)s] %(message)s")
        )
        handlers.append(syslog)

    logging.basicConfig(level=level, handlers=handlers, force=True)


def require_root() -> None:
    if os.geteuid() != 0:
        raise PrivilegeError("This script must be run as root.")


def build_orchestrator(args) -> WindowOrchestrator:
    """Wire the store, remote client and policy from settings."""
    store = ConfigStore(
        location_block_path=settings.LOCATION_BLOCK_FILE,
        forward_rules_path=settings.PORT_FORWARD_RULES_FILE,
        reload_command=settings.FIREWALL_RELOAD_COMMAND,
        reload_timeout=settings.FIREWALL_RELOAD_TIMEOUT,
    )
    remote = RemoteActionClient(
        user=args.ssh_user,
        host=args.target_host,
        ssh_binary=settings.SSH_BINARY,
        connect_timeout=settings.SSH_CONNECT_TIMEOUT,
        timeouts={
            RemoteAction.CHECK: settings.REMOTE_CHECK_TIMEOUT,
            RemoteAction.RENEW: settings.REMOTE_RENEW_TIMEOUT,
        },
    )
    return WindowOrchestrator(
        store=store,
        remote=remote,
        policy=ExpiryPolicy(settings.RENEWAL_THRESHOLD_DAYS),
        rule=InboundForwardRule(args.rule_label),
        geo=GeoBlockFilter(),
    )


def record_history(outcome) -> None:
    if not settings.RUN_HISTORY_PATH:
        return
    try:
        RunHistory(settings.RUN_HISTORY_PATH).record(outcome)
    except OSError as exc:
        logger.warning("Could not write run history to %s: %s", settings.RUN_HISTORY_PATH, exc)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    for value in (args.ssh_user, args.target_host):
        if value.startswith("-"):
            parser.error(f"'{value}' is not a valid user or host")

    try:
        require_root()
    except PrivilegeError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    setup_logging()
    orchestrator = build_orchestrator(args)
    logger.info(
        "Renewal handler for %s@%s, forward rule '%s'",
        args.ssh_user, args.target_host, args.rule_label,
    )
    lock = RunLock(settings.RUN_LOCK_PATH)
    try:
        lock.acquire()
    except LockHeld as exc:
        logger.error("%s, not starting", exc)
        return 1
    except OSError as exc:
        logger.error("Cannot take run lock %s: %s", settings.RUN_LOCK_PATH, exc)
        return 1

    try:
        outcome = orchestrator.run()
        record_history(outcome)
    finally:
        lock.release()

    return outcome.exit_code


def run():
    sys.exit(main())


if __name__ == "__main__":
    run()
