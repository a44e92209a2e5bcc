"""Stand-ins for a requests.Session used by HTTP-facing tests."""

from __future__ import annotations

import json
from typing import Any


class DummyResponse:
    def __init__(self, status_code: int, payload: Any = None, *, text: str | None = None, content: bytes = b"") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)
        self.content = content

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no JSON payload")
        return self._payload


class DummySession:
    def __init__(self, responses: list[Any]) -> None:
        self._responses = responses
        self.calls: list[tuple[str, dict[str, str] | None]] = []

    def get(self, url: str, params: dict[str, Any] | None = None, headers: dict[str, str] | None = None, timeout: float | None = None) -> DummyResponse:
        self.calls.append((url, headers))
        if not self._responses:
            raise AssertionError("no more responses queued")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response
