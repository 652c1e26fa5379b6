"""Certificate expiry parsing and the renew-or-skip decision."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from renewal.errors import ExpiryNotFound

logger = logging.getLogger(__name__)

EXPIRY_MARKER = "Expiry Date:"
DEFAULT_THRESHOLD_DAYS = 30

# Absolute, unambiguous renderings only; no numeric day/month guessing.
_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S%z",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%b %d %H:%M:%S %Y %Z",       # openssl x509 -enddate
    "%a %b %d %H:%M:%S %Z %Y",    # date(1)
    "%a %b %d %H:%M:%S %Y",
    "%d %b %Y %H:%M:%S",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
)
_SPACES = re.compile(r"\s+")


class Decision(str, Enum):
    DUE = "due"
    NOT_DUE = "not_due"


@dataclass(frozen=True)
class CertificateStatus:
    """Expiry of the certificate on the target host."""

    expiry: datetime
    days_remaining: int


@dataclass(frozen=True)
class RenewalDecision:
    decision: Decision
    status: CertificateStatus
    threshold_days: int

    @property
    def due(self) -> bool:
        return self.decision == Decision.DUE


def parse_date(token: str) -> datetime:
    """Parse an absolute date as printed by certbot, openssl or date(1).

    Naive values are taken as UTC. Raises ValueError if the token is not
    a recognised absolute date.
    """
    text = _SPACES.sub(" ", token.strip())
    if not text:
        raise ValueError("empty date")
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        parsed = None
    if parsed is None:
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        raise ValueError(f"unrecognised date: {token!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ExpiryPolicy:
    """Decide from a certbot status report whether renewal is due."""

    def __init__(self, threshold_days: int = DEFAULT_THRESHOLD_DAYS):
        self.threshold_days = threshold_days

    @staticmethod
    def candidates(raw_status: str) -> list[str]:
        """Return the date text of every expiry line, in report order.

        The text after the marker is cut at any parenthetical annotation,
        e.g. ``2025-03-01 (VALID: 30 days)`` gives ``2025-03-01``.
        """
        found = []
        for line in raw_status.splitlines():
            if EXPIRY_MARKER not in line:
                continue
            text = line.split(EXPIRY_MARKER, 1)[1]
            text = text.split("(", 1)[0].strip()
            if text:
                found.append(text)
        return found

    def extract_expiry(self, raw_status: str) -> datetime:
        """Return the first well-formed expiry date in the report.

        Raises:
            ExpiryNotFound: no expiry line, or none with a usable date.
        """
        tokens = self.candidates(raw_status)
        if not tokens:
            raise ExpiryNotFound(f"no '{EXPIRY_MARKER}' line with a date in status report")
        for token in tokens:
            try:
                expiry = parse_date(token)
            except ValueError:
                logger.warning("Ignoring unparseable expiry date '%s'", token)
                continue
            logger.info("Found Expiry Date: %s", token)
            return expiry
        raise ExpiryNotFound(f"no parseable expiry date among {tokens!r}")

    def status_from(self, raw_status: str, now: datetime) -> CertificateStatus:
        expiry = self.extract_expiry(raw_status)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        days_remaining = (expiry - now) // timedelta(days=1)
        return CertificateStatus(expiry=expiry, days_remaining=days_remaining)

    def decide(
        self, raw_status: str, now: datetime, threshold_days: int | None = None
    ) -> RenewalDecision:
        """Due iff ``days_remaining <= threshold``; the boundary day is due."""
        threshold = self.threshold_days if threshold_days is None else threshold_days
        status = self.status_from(raw_status, now)
        decision = Decision.DUE if status.days_remaining <= threshold else Decision.NOT_DUE
        logger.info(
            "Certificate is valid for %d days (threshold %d): %s",
            status.days_remaining, threshold, decision.value,
        )
        return RenewalDecision(decision=decision, status=status, threshold_days=threshold)
