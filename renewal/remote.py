"""Named certificate operations on the target host over forced-command SSH.

The target's ``authorized_keys`` entry pins our key to a wrapper that only
understands two selectors, ``check`` and ``renew``. Nothing else is ever
sent as the remote command.
"""

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum

from renewal.errors import AuthRejected, CommandFailed, Unreachable

logger = logging.getLogger(__name__)

# ssh reserves 255 for its own failures
SSH_FAILURE_EXIT = 255
_AUTH_MARKERS = (
    "Permission denied",
    "Host key verification failed",
    "Too many authentication failures",
)


class RemoteAction(str, Enum):
    CHECK = "check"
    RENEW = "renew"


@dataclass
class RemoteResult:
    """Captured result of one remote operation."""

    action: RemoteAction
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    @property
    def success(self) -> bool:
        return self.returncode == 0


class RemoteActionClient:
    """Run ``check`` / ``renew`` on the target host via the ssh client."""

    DEFAULT_CONNECT_TIMEOUT = 15
    DEFAULT_TIMEOUTS = {RemoteAction.CHECK: 120, RemoteAction.RENEW: 600}

    def __init__(
        self,
        user: str,
        host: str,
        ssh_binary: str = "ssh",
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        timeouts: dict | None = None,
        extra_options: list[str] | None = None,
    ):
        self.user = user
        self.host = host
        self.ssh_binary = ssh_binary
        self.connect_timeout = connect_timeout
        self.timeouts = dict(self.DEFAULT_TIMEOUTS)
        self.timeouts.update(timeouts or {})
        self.extra_options = list(extra_options or [])

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}"

    def command_for(self, action: RemoteAction) -> list[str]:
        """Build the ssh argv for ``action``."""
        return [
            self.ssh_binary,
            "-o", "BatchMode=yes",
            "-o", "StrictHostKeyChecking=accept-new",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            *self.extra_options,
            self.target,
            RemoteAction(action).value,
        ]

    def invoke(self, action: RemoteAction) -> RemoteResult:
        """Run ``action`` remotely and return its captured output.

        Raises:
            Unreachable: connection failed, timed out, or ssh is missing.
            AuthRejected: the target refused our key or host key.
            CommandFailed: the remote command exited non-zero.
        """
        action = RemoteAction(action)
        timeout = self.timeouts[action]
        logger.info("Running '%s' on %s (timeout %ds)", action.value, self.target, timeout)
        try:
            proc = subprocess.run(
                self.command_for(action),
                stdin=subprocess.DEVNULL,
                capture_output=True, text=True, errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise Unreachable(
                f"'{action.value}' on {self.target} timed out after {timeout}s",
                output=_decode(exc.stdout) + _decode(exc.stderr),
            ) from exc
        except OSError as exc:
            raise Unreachable(f"cannot start {self.ssh_binary}: {exc}") from exc

        result = RemoteResult(
            action=action,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )
        if result.returncode == SSH_FAILURE_EXIT:
            if any(marker in result.stderr for marker in _AUTH_MARKERS):
                raise AuthRejected(
                    f"{self.target} rejected authentication",
                    output=result.output, returncode=result.returncode,
                )
            raise Unreachable(
                f"could not connect to {self.target}",
                output=result.output, returncode=result.returncode,
            )
        if result.returncode != 0:
            raise CommandFailed(
                f"'{action.value}' on {self.target} exited with {result.returncode}",
                output=result.output, returncode=result.returncode,
            )
        logger.info("'%s' on %s succeeded", action.value, self.target)
        return result


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", "replace")
    return data
