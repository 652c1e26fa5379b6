"""
Certificate Renewal Window Module.

Checks the certificate on the target host, and when renewal is due opens
a bounded window in the gateway, runs the renewal remotely, and always
restores the gateway's secure baseline afterwards.
"""

from renewal.expiry import ExpiryPolicy, CertificateStatus, Decision, RenewalDecision
from renewal.remote import RemoteActionClient, RemoteAction, RemoteResult
from renewal.orchestrator import WindowOrchestrator, RunOutcome, TerminationCause, Phase
from renewal.lock import RunLock
from renewal.history import RunHistory

__all__ = [
    "ExpiryPolicy", "CertificateStatus", "Decision", "RenewalDecision",
    "RemoteActionClient", "RemoteAction", "RemoteResult",
    "WindowOrchestrator", "RunOutcome", "TerminationCause", "Phase",
    "RunLock", "RunHistory",
]
