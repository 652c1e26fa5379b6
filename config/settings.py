"""Project-wide settings and defaults."""

import os
import shlex
from pathlib import Path

# Base paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Gateway configuration files
LOCATION_BLOCK_FILE = os.environ.get(
    "LOCATION_BLOCK_FILE", "/var/ipfire/firewall/locationblock"
)
PORT_FORWARD_RULES_FILE = os.environ.get(
    "PORT_FORWARD_RULES_FILE", "/var/ipfire/firewall/config"
)
FIREWALL_RELOAD_COMMAND = shlex.split(
    os.environ.get("FIREWALL_RELOAD_COMMAND", "/etc/init.d/firewall reload")
)
FIREWALL_RELOAD_TIMEOUT = int(os.environ.get("FIREWALL_RELOAD_TIMEOUT", "120"))

# Renewal policy
RENEWAL_THRESHOLD_DAYS = int(os.environ.get("RENEWAL_THRESHOLD_DAYS", "30"))

# Remote channel (forced-command SSH)
SSH_BINARY = os.environ.get("SSH_BINARY", "ssh")
SSH_CONNECT_TIMEOUT = int(os.environ.get("SSH_CONNECT_TIMEOUT", "15"))
REMOTE_CHECK_TIMEOUT = int(os.environ.get("REMOTE_CHECK_TIMEOUT", "120"))
REMOTE_RENEW_TIMEOUT = int(os.environ.get("REMOTE_RENEW_TIMEOUT", "600"))

# Run lock and history
RUN_LOCK_PATH = os.environ.get("RUN_LOCK_PATH", "/var/lock/cert-renewal.lock")
RUN_HISTORY_PATH = os.environ.get(
    "RUN_HISTORY_PATH", "/var/log/cert-renewal/history.json"
)

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_FILE = os.environ.get("LOG_FILE", "")
LOG_SYSLOG = os.environ.get("LOG_SYSLOG", "true").lower() == "true"
LOG_TAG = os.environ.get("LOG_TAG", "CertRenewal")
