"""Append-only JSON-lines log of caskforge activity.

Every record is checked against ``resources/telemetry.schema.json`` before it
is written, so the event vocabulary (``cli.<command>``, ``livecheck.check``,
``uninstall.missing``) lives in one place. Set ``CASKFORGE_TELEMETRY=0`` to
stop recording.
"""

from __future__ import annotations

import json
import os
import time
from collections import Counter
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Iterator

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from caskforge.settings import RuntimeSettings

LOG_FILENAME = "telemetry.jsonl"
LIVECHECK_CHECK = "livecheck.check"
UNINSTALL_MISSING = "uninstall.missing"

_DISABLE_VALUES = {"0", "false", "no", "off"}


def cli_event(command: str) -> str:
    return f"cli.{command}"


def telemetry_enabled() -> bool:
    return os.getenv("CASKFORGE_TELEMETRY", "1").lower() not in _DISABLE_VALUES


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    resource = resources.files("caskforge.resources") / "telemetry.schema.json"
    with resource.open("r", encoding="utf-8") as handle:
        return Draft202012Validator(json.load(handle))


class EventLog:
    """Telemetry for one runtime home; records are keyed by descriptor identifier."""

    def __init__(self, settings: RuntimeSettings) -> None:
        self._path = settings.log_dir / LOG_FILENAME

    @property
    def path(self) -> Path:
        return self._path

    def emit(
        self,
        event: str,
        *,
        identifier: str | None = None,
        payload: Dict[str, Any] | None = None,
        level: str = "info",
        status: str | None = None,
        component: str | None = None,
        duration_ms: float | None = None,
    ) -> None:
        if not telemetry_enabled():
            return
        record: Dict[str, Any] = {"ts": time.time(), "event": event, "level": level, "payload": payload or {}}
        optional = {"identifier": identifier, "status": status, "component": component, "durationMs": duration_ms}
        record.update({key: value for key, value in optional.items() if value is not None})
        error = best_match(_validator().iter_errors(record))
        if error is not None:
            where = ".".join(str(part) for part in error.absolute_path) or "<record>"
            raise ValueError(f"invalid telemetry record at {where}: {error.message}")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(record, ensure_ascii=False) + "\n")

    def events(self) -> Iterator[Dict[str, Any]]:
        if not self._path.exists():
            return
        with self._path.open("r", encoding="utf-8") as fh:
            for line in fh:
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(record, dict):
                    yield record

    def summary(self) -> Dict[str, Any]:
        by_event: Counter[str] = Counter()
        by_level: Counter[str] = Counter()
        by_identifier: Dict[str, Counter[str]] = {}
        total = 0
        for record in self.events():
            total += 1
            event = str(record.get("event", "unknown"))
            by_event[event] += 1
            by_level[str(record.get("level", "info"))] += 1
            identifier = record.get("identifier")
            if identifier:
                by_identifier.setdefault(identifier, Counter())[event] += 1
        return {
            "total": total,
            "by_event": dict(by_event),
            "by_level": dict(by_level),
            "by_identifier": {key: dict(value) for key, value in sorted(by_identifier.items())},
        }

    def clear(self) -> None:
        if self._path.exists():
            self._path.unlink()


__all__ = ["EventLog", "LIVECHECK_CHECK", "UNINSTALL_MISSING", "cli_event", "telemetry_enabled"]
