"""Guarded renewal window: check, open, renew, and always close again.

A run walks ``CHECKING -> (NOT_DUE) | (OPENING -> ACTING) -> CLOSING``.
Once checking has begun, CLOSING runs on every way out of the run: normal
completion, a remote or configuration failure, or a termination signal.
Closing forces both controls back to their secure baseline with the
idempotent toggle, so running it when nothing was opened is harmless.
"""

import logging
import signal
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from firewall.controls import ControlState, GeoBlockFilter, InboundForwardRule
from renewal.errors import ConfigError, ParseError, RemoteError, RunInterrupted
from renewal.expiry import ExpiryPolicy, RenewalDecision
from renewal.remote import RemoteAction

logger = logging.getLogger(__name__)

TRAPPED_SIGNALS = ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT")


class Phase(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    OPENING = "opening"
    ACTING = "acting"
    CLOSING = "closing"
    DONE = "done"


# A signal raises out of these; anywhere else it is deferred.
_INTERRUPTIBLE = (Phase.CHECKING, Phase.OPENING, Phase.ACTING)


class TerminationCause(str, Enum):
    NORMAL = "normal"
    REMOTE_FAILURE = "remote_failure"
    SIGNAL = "signal"
    CONFIG_ERROR = "config_error"
    PARSE_ERROR = "parse_error"


@dataclass
class RenewalWindow:
    opened: bool = False
    controls_touched: set = field(default_factory=set)


@dataclass
class RunOutcome:
    """What happened during one run; drives logging and the exit code."""

    renewal_attempted: bool = False
    renewal_succeeded: bool = False
    termination: TerminationCause = TerminationCause.NORMAL
    signal_name: str = ""
    failed_phase: str = ""
    errors: list[str] = field(default_factory=list)
    renewal_error: str = ""
    restored: bool = False
    closing_errors: list[str] = field(default_factory=list)
    decision: str = ""
    days_remaining: Optional[int] = None
    expiry: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def fail(self, cause: TerminationCause, phase: Phase, message: str) -> None:
        """Record a failure; the first cause and phase are kept."""
        if self.termination == TerminationCause.NORMAL:
            self.termination = cause
            self.failed_phase = phase.value
        self.errors.append(message)

    def observe(self, decision: RenewalDecision) -> None:
        self.decision = decision.decision.value
        self.days_remaining = decision.status.days_remaining
        self.expiry = decision.status.expiry

    @property
    def success(self) -> bool:
        return (
            self.termination == TerminationCause.NORMAL
            and not self.errors
            and self.restored
        )

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def summary(self) -> str:
        if self.success:
            if self.renewal_attempted:
                result = "succeeded" if self.renewal_succeeded else "failed"
                return f"renewal attempted ({result}), gateway secured"
            return "renewal not needed, gateway secured"
        parts = [f"{self.termination.value}"]
        if self.failed_phase:
            parts.append(f"in {self.failed_phase}")
        if self.signal_name:
            parts.append(f"({self.signal_name})")
        if not self.restored:
            parts.append("- RESTORATION INCOMPLETE")
        return "run failed: " + " ".join(parts)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "termination": self.termination.value,
            "signal": self.signal_name,
            "failed_phase": self.failed_phase,
            "decision": self.decision,
            "days_remaining": self.days_remaining,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "renewal_attempted": self.renewal_attempted,
            "renewal_succeeded": self.renewal_succeeded,
            "renewal_error": self.renewal_error,
            "errors": list(self.errors),
            "restored": self.restored,
            "closing_errors": list(self.closing_errors),
            "exit_code": self.exit_code,
        }


def _log_output(text: str, level: int = logging.INFO) -> None:
    for line in (text or "").splitlines():
        if line.strip():
            logger.log(level, "remote: %s", line)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WindowOrchestrator:
    """Drive one renewal run against a ConfigStore and a RemoteActionClient."""

    def __init__(
        self,
        store,
        remote,
        policy: ExpiryPolicy,
        rule: InboundForwardRule,
        geo: GeoBlockFilter | None = None,
        clock: Callable[[], datetime] = _utcnow,
        trap_signals: bool = True,
    ):
        self.store = store
        self.remote = remote
        self.policy = policy
        self.rule = rule
        self.geo = geo or GeoBlockFilter()
        self.clock = clock
        self.trap_signals = trap_signals
        self.phase = Phase.IDLE
        self._signal_name = ""
        self._signal_phase: Optional[Phase] = None
        self._raised = False

    # ------------------ run ------------------

    def run(self) -> RunOutcome:
        """Run the window once. Never leaves without attempting CLOSING."""
        outcome = RunOutcome(started_at=self.clock())
        window = RenewalWindow()
        logger.info("--- Starting certificate renewal check ---")
        with self._signals_trapped():
            try:
                self._advance(window, outcome)
            except RunInterrupted as exc:
                logger.warning("Run interrupted by %s", exc.signal_name)
            finally:
                # Only the first signal raises, so this loops at most twice.
                while True:
                    try:
                        self._close(window, outcome)
                        break
                    except RunInterrupted as exc:
                        logger.warning("Run interrupted by %s, restarting cleanup", exc.signal_name)

        if self._signal_name:
            outcome.signal_name = self._signal_name
            outcome.fail(
                TerminationCause.SIGNAL,
                self._signal_phase or Phase.IDLE,
                f"interrupted by {self._signal_name}",
            )
        outcome.finished_at = self.clock()
        log = logger.info if outcome.success else logger.error
        log("--- Run finished: %s ---", outcome.summary())
        return outcome

    def _advance(self, window: RenewalWindow, outcome: RunOutcome) -> None:
        self._enter(Phase.CHECKING)
        decision = self._check(outcome)
        if decision is None:
            return
        if not decision.due:
            logger.info("Certificate is not yet due for renewal. No action needed.")
            return
        logger.info(
            "Certificate is due for renewal (%d days remaining is <= %d).",
            decision.status.days_remaining, decision.threshold_days,
        )

        self._enter(Phase.OPENING)
        if not self._open(window, outcome):
            return

        self._enter(Phase.ACTING)
        self._act(outcome)

    # ------------------ phases ------------------

    def _check(self, outcome: RunOutcome) -> RenewalDecision | None:
        logger.info("Fetching certificate status...")
        try:
            result = self.remote.invoke(RemoteAction.CHECK)
        except RemoteError as exc:
            logger.error("FAILURE: could not fetch certificate status: %s", exc)
            _log_output(exc.output, logging.ERROR)
            outcome.fail(TerminationCause.REMOTE_FAILURE, Phase.CHECKING, str(exc))
            return None

        try:
            decision = self.policy.decide(result.output, self.clock())
        except ParseError as exc:
            logger.error("FAILURE: could not parse certificate status: %s", exc)
            _log_output(result.output, logging.ERROR)
            outcome.fail(TerminationCause.PARSE_ERROR, Phase.CHECKING, str(exc))
            return None
        outcome.observe(decision)
        return decision

    def _open(self, window: RenewalWindow, outcome: RunOutcome) -> bool:
        """Open both controls. Returns False if the window must not proceed."""
        try:
            self.store.locate(self.rule)
            self.store.locate(self.geo)
        except ConfigError as exc:
            logger.error("Refusing to open the renewal window: %s", exc)
            outcome.fail(TerminationCause.CONFIG_ERROR, Phase.OPENING, str(exc))
            return False

        logger.info("Temporarily opening firewall for renewal...")
        window.opened = True
        for control in (self.geo, self.rule):
            window.controls_touched.add(control)
            try:
                self.store.toggle(control, ControlState.OPEN)
            except ConfigError as exc:
                logger.error("Could not open %s: %s", control.name, exc)
                outcome.fail(TerminationCause.CONFIG_ERROR, Phase.OPENING, str(exc))
        try:
            self.store.commit()
        except ConfigError as exc:
            logger.error("Could not apply opened controls: %s", exc)
            outcome.fail(TerminationCause.CONFIG_ERROR, Phase.OPENING, str(exc))
        return True

    def _act(self, outcome: RunOutcome) -> None:
        logger.info("Issuing certificate renewal command...")
        outcome.renewal_attempted = True
        try:
            result = self.remote.invoke(RemoteAction.RENEW)
        except RemoteError as exc:
            outcome.renewal_error = str(exc)
            logger.error("FAILURE: Certificate renewal failed: %s", exc)
            _log_output(exc.output, logging.ERROR)
            return
        outcome.renewal_succeeded = True
        _log_output(result.output)
        logger.info("SUCCESS: Certificate renewal completed successfully.")

    def _close(self, window: RenewalWindow, outcome: RunOutcome) -> None:
        self.phase = Phase.CLOSING
        if window.opened:
            touched = ", ".join(sorted(c.name for c in window.controls_touched))
            logger.info("--- Executing security cleanup (opened: %s) ---", touched)
        else:
            logger.info("--- Executing precautionary security cleanup ---")

        for control in (self.rule, self.geo):
            logger.info("Cleanup: forcing %s to %s", control.name, ControlState.CLOSED.value)
            try:
                self.store.toggle(control, ControlState.CLOSED)
            except ConfigError as exc:
                logger.critical("Cleanup could not close %s: %s", control.name, exc)
                outcome.closing_errors.append(f"{control.name}: {exc}")
        try:
            self.store.commit()
        except ConfigError as exc:
            logger.critical("Cleanup could not reload the firewall: %s", exc)
            outcome.closing_errors.append(f"reload: {exc}")

        outcome.restored = not outcome.closing_errors
        if outcome.restored:
            logger.info("Cleanup complete. Network secured.")
        else:
            logger.critical(
                "Cleanup INCOMPLETE, the gateway may not be at its secure "
                "baseline: %s", "; ".join(outcome.closing_errors),
            )
        self.phase = Phase.DONE

    # ------------------ signals ------------------

    def _enter(self, phase: Phase) -> None:
        self.phase = phase
        logger.debug("Entering %s", phase.value)
        if self._signal_name and not self._raised:
            self._raised = True
            raise RunInterrupted(signal.Signals[self._signal_name], self._signal_name)

    def _on_signal(self, signum, frame) -> None:
        name = signal.Signals(signum).name
        if not self._signal_name:
            self._signal_name = name
            self._signal_phase = self.phase
        if self.phase in _INTERRUPTIBLE and not self._raised:
            self._raised = True
            logger.warning("Received %s during %s, securing the gateway", name, self.phase.value)
            raise RunInterrupted(signum, name)
        logger.warning("Received %s during %s, deferred until cleanup completes", name, self.phase.value)

    @contextmanager
    def _signals_trapped(self):
        if not self.trap_signals:
            yield
            return
        previous = {}
        for name in TRAPPED_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is not None:
                previous[signum] = signal.signal(signum, self._on_signal)
        try:
            yield
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)
