"""Run history: one JSON entry per renewal run, newest first."""

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_ENTRIES = 1000


class RunHistory:
    """JSON-file-backed record of past run outcomes."""

    def __init__(self, path: str | Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def record(self, outcome) -> dict:
        """Prepend ``outcome`` (a RunOutcome or its dict) and save.

        An unreadable history file is moved aside rather than overwritten.
        """
        entry = outcome if isinstance(outcome, dict) else outcome.to_dict()
        try:
            data = self._load_strict()
        except ValueError as exc:
            aside = self._path.with_name(self._path.name + ".corrupt")
            logger.warning(
                "Run history %s is unreadable (%s), moving it to %s",
                self._path, exc, aside,
            )
            os.replace(self._path, aside)
            data = []
        data.insert(0, entry)
        if len(data) > MAX_ENTRIES:
            data = data[:MAX_ENTRIES]
        self._save(data)
        return entry

    def list_all(self, limit: int = 50) -> list[dict]:
        return self._load()[:limit]

    def last(self) -> dict | None:
        data = self._load()
        return data[0] if data else None

    def _load(self) -> list[dict]:
        try:
            return self._load_strict()
        except (ValueError, OSError):
            return []

    def _load_strict(self) -> list[dict]:
        if not self._path.exists():
            return []
        data = json.loads(self._path.read_text())
        if not isinstance(data, list):
            raise ValueError(f"expected a JSON list, found {type(data).__name__}")
        return data

    def _save(self, data: list[dict]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(data, indent=2, default=str))
