"""Error taxonomy for the renewal handler."""


class RenewalError(Exception):
    """Base class for every error raised by the renewal handler."""


class ArgumentError(RenewalError):
    """Wrong command-line usage."""


class PrivilegeError(RenewalError):
    """The handler is not running with the privilege it needs."""


class LockHeld(RenewalError):
    """Another run already holds the run lock."""


# --- Gateway configuration ---

class ConfigError(RenewalError):
    """A gateway configuration file could not be read, edited or applied."""


class RuleNotFound(ConfigError):
    """The control's record is absent or ambiguous in its file."""


class WriteFailed(ConfigError):
    """The edited file could not be staged or put in place."""


class ReloadFailed(ConfigError):
    """The firewall reload command did not succeed."""


# --- Remote channel ---

class RemoteError(RenewalError):
    """A remote operation failed. ``output`` holds everything it printed."""

    def __init__(self, message: str, output: str = "", returncode: int | None = None):
        super().__init__(message)
        self.output = output
        self.returncode = returncode


class Unreachable(RemoteError):
    """The host could not be reached or the session timed out."""


class AuthRejected(RemoteError):
    """The remote side refused our credentials or host key."""


class CommandFailed(RemoteError):
    """The remote command ran and exited non-zero."""


# --- Status parsing ---

class ParseError(RenewalError):
    """The certificate status report could not be interpreted."""


class ExpiryNotFound(ParseError):
    """No usable expiry date was found in the status report."""


class RunInterrupted(BaseException):
    """Raised from a signal handler to unwind a run into its cleanup."""

    def __init__(self, signum: int, signal_name: str):
        super().__init__(signal_name)
        self.signum = signum
        self.signal_name = signal_name
