"""Staged, idempotent edits of the gateway firewall configuration files.

Two files are managed:

* the location block file, holding ``LOCATIONBLOCK_ENABLED=on|off``
  among other ``KEY=value`` lines, and
* the firewall rules file, one comma-separated record per line, where a
  port forward is a record of kind ``dnat`` carrying the operator's remark.

Edits never rewrite the shape of a file. Only the one value being switched
changes; every other byte, line ending and record stays where it was.
"""

import logging
import os
import stat
import subprocess
import tempfile
from pathlib import Path

from firewall.controls import (
    ControlState, GeoBlockFilter, InboundForwardRule, SecurityControl,
)
from renewal.errors import ConfigError, ReloadFailed, RuleNotFound, WriteFailed

logger = logging.getLogger(__name__)

LOCATION_BLOCK_KEY = "LOCATIONBLOCK_ENABLED"
LOCATION_BLOCK_VALUES = {ControlState.OPEN: "off", ControlState.CLOSED: "on"}

# Firewall rule record layout (0-based field positions)
ENABLED_FIELD = 3
REMARK_FIELD = 17
KIND_FIELD = 32
INBOUND_KIND = "dnat"
RULE_VALUES = {ControlState.OPEN: "ON", ControlState.CLOSED: ""}

# Round-trips any byte the gateway UI may have written
_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


def _split_records(text: str) -> list[str]:
    """Split on LF only, keeping each line ending.

    Fields may legitimately hold form feeds or other characters that
    ``str.splitlines`` would treat as line breaks.
    """
    lines = [line + "\n" for line in text.split("\n")]
    lines[-1] = lines[-1][:-1]
    if not lines[-1]:
        lines.pop()
    return lines


def _split_eol(line: str) -> tuple[str, str]:
    body = line.rstrip("\r\n")
    return body, line[len(body):]


class ConfigStore:
    """Toggle the gateway's security controls and apply them with a reload."""

    def __init__(
        self,
        location_block_path: str | Path,
        forward_rules_path: str | Path,
        reload_command: list[str],
        reload_timeout: int = 120,
    ):
        self.location_block_path = Path(location_block_path)
        self.forward_rules_path = Path(forward_rules_path)
        self.reload_command = list(reload_command)
        self.reload_timeout = reload_timeout

    # ------------------ public operations ------------------

    def toggle(self, control: SecurityControl, state: ControlState) -> bool:
        """Put ``control`` into ``state``. Returns True if the file changed.

        Asking for the state a control is already in is a successful no-op
        and leaves the file untouched.
        """
        path = self._path_for(control)
        original = self._read(path)
        if isinstance(control, GeoBlockFilter):
            updated = self._edit_location_block(original, state)
        else:
            updated = self._edit_forward_rule(original, control, state)

        if updated == original:
            logger.info("%s already %s, no change", control.name, state.value)
            return False

        if len(_split_records(updated)) != len(_split_records(original)):
            raise WriteFailed(
                f"edit of {path} changed its record count; no changes made"
            )
        self._write_staged(path, updated)
        logger.info("%s set to %s (%s)", control.name, state.value, path)
        return True

    def locate(self, control: SecurityControl) -> None:
        """Check that ``control`` resolves to exactly one record."""
        self.state_of(control)

    def state_of(self, control: SecurityControl) -> ControlState:
        """Return the state currently written on disk for ``control``."""
        text = self._read(self._path_for(control))
        lines = _split_records(text)
        if isinstance(control, GeoBlockFilter):
            index = self._find_location_block(lines)
            value = _split_eol(lines[index])[0].partition("=")[2].strip()
            if value == LOCATION_BLOCK_VALUES[ControlState.OPEN]:
                return ControlState.OPEN
            return ControlState.CLOSED
        index = self._find_forward_rule(lines, control)
        fields = _split_eol(lines[index])[0].split(",")
        if fields[ENABLED_FIELD] == RULE_VALUES[ControlState.OPEN]:
            return ControlState.OPEN
        return ControlState.CLOSED

    def commit(self) -> None:
        """Reload the firewall so that every pending toggle takes effect.

        A failed reload is reported but does not undo the file edits.
        """
        logger.info("Reloading firewall to apply changes...")
        try:
            result = subprocess.run(
                self.reload_command,
                capture_output=True, text=True, errors="replace",
                timeout=self.reload_timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise ReloadFailed(
                f"firewall reload timed out after {self.reload_timeout}s"
            ) from exc
        except OSError as exc:
            raise ReloadFailed(f"firewall reload could not start: {exc}") from exc

        for line in (result.stdout + result.stderr).splitlines():
            if line.strip():
                logger.info("reload: %s", line)
        if result.returncode != 0:
            raise ReloadFailed(f"firewall reload exited with {result.returncode}")
        logger.info("Firewall reloaded")

    # ------------------ location block ------------------

    def _find_location_block(self, lines: list[str]) -> int:
        matches = [
            i for i, line in enumerate(lines)
            if _split_eol(line)[0].partition("=")[0].strip() == LOCATION_BLOCK_KEY
        ]
        if len(matches) != 1:
            raise RuleNotFound(
                f"expected one {LOCATION_BLOCK_KEY} line in "
                f"{self.location_block_path}, found {len(matches)}"
            )
        value = _split_eol(lines[matches[0]])[0].partition("=")[2].strip()
        if value not in LOCATION_BLOCK_VALUES.values():
            raise RuleNotFound(
                f"{LOCATION_BLOCK_KEY} has unexpected value '{value}' in "
                f"{self.location_block_path}"
            )
        return matches[0]

    def _edit_location_block(self, text: str, state: ControlState) -> str:
        lines = _split_records(text)
        index = self._find_location_block(lines)
        body, eol = _split_eol(lines[index])
        key, _, value = body.partition("=")
        wanted = LOCATION_BLOCK_VALUES[state]
        if value.strip() == wanted:
            return text
        lines[index] = f"{key}={value.replace(value.strip(), wanted, 1)}{eol}"
        return "".join(lines)

    # ------------------ forward rule ------------------

    def _find_forward_rule(self, lines: list[str], rule: InboundForwardRule) -> int:
        if not rule.label:
            raise RuleNotFound("port forward remark must not be empty")
        matches = []
        for i, line in enumerate(lines):
            fields = _split_eol(line)[0].split(",")
            if len(fields) <= KIND_FIELD:
                continue
            if fields[REMARK_FIELD] == rule.label and fields[KIND_FIELD] == INBOUND_KIND:
                matches.append(i)
        if not matches:
            raise RuleNotFound(
                f"no {INBOUND_KIND} rule with remark '{rule.label}' in "
                f"{self.forward_rules_path}; check the rule in the WUI"
            )
        if len(matches) > 1:
            raise RuleNotFound(
                f"{len(matches)} {INBOUND_KIND} rules share the remark "
                f"'{rule.label}'; the remark must be unique"
            )
        return matches[0]

    def _edit_forward_rule(
        self, text: str, rule: InboundForwardRule, state: ControlState
    ) -> str:
        lines = _split_records(text)
        index = self._find_forward_rule(lines, rule)
        body, eol = _split_eol(lines[index])
        fields = body.split(",")
        if fields[ENABLED_FIELD] == RULE_VALUES[state]:
            return text
        fields[ENABLED_FIELD] = RULE_VALUES[state]
        lines[index] = ",".join(fields) + eol
        return "".join(lines)

    # ------------------ file helpers ------------------

    def _path_for(self, control: SecurityControl) -> Path:
        if isinstance(control, GeoBlockFilter):
            return self.location_block_path
        if isinstance(control, InboundForwardRule):
            return self.forward_rules_path
        raise TypeError(f"unsupported control: {control!r}")

    @staticmethod
    def _read(path: Path) -> str:
        try:
            with open(path, encoding=_ENCODING, errors=_ERRORS, newline="") as fh:
                return fh.read()
        except OSError as exc:
            raise ConfigError(f"cannot read {path}: {exc}") from exc

    @staticmethod
    def _write_staged(path: Path, content: str) -> None:
        """Write ``content`` next to ``path`` and move it into place.

        The original is only replaced once the staged copy is complete.
        """
        if not content.strip():
            raise WriteFailed(f"staged content for {path} is empty; no changes made")
        try:
            st = os.stat(path)
            fd, tmp = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
            )
        except OSError as exc:
            raise WriteFailed(f"cannot stage {path}: {exc}") from exc

        try:
            with os.fdopen(fd, "w", encoding=_ENCODING, errors=_ERRORS, newline="") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp, stat.S_IMODE(st.st_mode))
            os.chown(tmp, st.st_uid, st.st_gid)
            os.replace(tmp, path)
        except OSError as exc:
            _discard(tmp)
            raise WriteFailed(f"cannot replace {path}: {exc}; no changes made") from exc
        except BaseException:
            _discard(tmp)
            raise
        _sync_directory(path.parent)


def _sync_directory(directory: Path) -> None:
    """Flush a rename in ``directory`` to disk."""
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError as exc:
        logger.warning("Cannot open %s to flush the rename: %s", directory, exc)
        return
    try:
        os.fsync(fd)
    except OSError as exc:
        logger.warning("Cannot flush %s after the rename: %s", directory, exc)
    finally:
        os.close(fd)


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
