"""Upstream version discovery for package descriptors."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List

import requests
from packaging.version import InvalidVersion, Version

from caskforge.app.resolver import USER_AGENT, resolve_download_url
from caskforge.domain import LivecheckError, LivecheckSpec, PackageDescriptor, TemplateError
from caskforge.settings import RuntimeSettings
from caskforge.utils.telemetry import LIVECHECK_CHECK, EventLog

GITHUB_API = "https://api.github.com"
TOKEN_ENV_VARS = ("CASKFORGE_GITHUB_TOKEN", "HOMEBREW_GITHUB_API_TOKEN", "GITHUB_TOKEN")
CHECK_INTERVAL = timedelta(hours=6)
DEFAULT_TIMEOUT = 10

_GITHUB_REPO = re.compile(r"^https?://(?:www\.)?github\.com/([^/\s]+)/([^/\s?#]+)")
_TAG_PREFIX = re.compile(r"^[vV](?=\d)")


def normalise_version(tag: str) -> str:
    return _TAG_PREFIX.sub("", tag.strip())


def _parse_version(value: str) -> Version | None:
    try:
        return Version(value)
    except InvalidVersion:
        return None


def is_outdated(current: str, latest: str) -> bool:
    """True when ``latest`` is ahead of ``current`` (or merely different if unparsable)."""

    current_v = _parse_version(normalise_version(current))
    latest_v = _parse_version(normalise_version(latest))
    if current_v is None or latest_v is None:
        return normalise_version(current) != normalise_version(latest)
    return latest_v > current_v


def _versions_differ(current: str, latest: str) -> bool:
    current_v = _parse_version(normalise_version(current))
    latest_v = _parse_version(normalise_version(latest))
    if current_v is None or latest_v is None:
        return normalise_version(current) != normalise_version(latest)
    return current_v != latest_v


def _livecheck_url(descriptor: PackageDescriptor, spec: LivecheckSpec) -> str:
    if spec.url in {"url", "self"}:
        try:
            return resolve_download_url(descriptor)
        except TemplateError as exc:
            raise LivecheckError(f"{descriptor.identifier}: {exc}") from exc
    if spec.url == "homepage":
        return descriptor.homepage
    return spec.url


def _github_repo(url: str) -> tuple[str, str]:
    match = _GITHUB_REPO.match(url)
    if not match:
        raise LivecheckError(f"cannot derive a GitHub repository from {url}")
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return owner, repo


def _headers(*, github: bool) -> Dict[str, str]:
    headers = {"User-Agent": USER_AGENT}
    if github:
        headers["Accept"] = "application/vnd.github+json"
        for name in TOKEN_ENV_VARS:
            token = os.environ.get(name)
            if token:
                headers["Authorization"] = f"Bearer {token}"
                break
    return headers


def _get(session: requests.Session, url: str, *, github: bool, timeout: float) -> Any:
    try:
        response = session.get(url, headers=_headers(github=github), timeout=timeout)
    except requests.RequestException as exc:
        raise LivecheckError(f"request to {url} failed: {exc}") from exc
    if response.status_code >= 400:
        raise LivecheckError(f"request to {url} failed with HTTP {response.status_code}")
    return response


def _json(response: Any, url: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise LivecheckError(f"response from {url} is not valid JSON") from exc


def _tag_name(release: Any, url: str) -> str:
    if not isinstance(release, dict) or not isinstance(release.get("tag_name"), str) or not release["tag_name"].strip():
        raise LivecheckError(f"release payload from {url} has no tag_name")
    return normalise_version(release["tag_name"])


def _strategy_github_latest(url: str, session: requests.Session, timeout: float) -> str:
    owner, repo = _github_repo(url)
    endpoint = f"{GITHUB_API}/repos/{owner}/{repo}/releases/latest"
    return _tag_name(_json(_get(session, endpoint, github=True, timeout=timeout), endpoint), endpoint)


def _strategy_github_releases(url: str, session: requests.Session, timeout: float) -> str:
    owner, repo = _github_repo(url)
    endpoint = f"{GITHUB_API}/repos/{owner}/{repo}/releases"
    payload = _json(_get(session, endpoint, github=True, timeout=timeout), endpoint)
    if not isinstance(payload, list):
        raise LivecheckError(f"release list from {endpoint} must be an array")
    for release in payload:
        if isinstance(release, dict) and not release.get("draft") and not release.get("prerelease"):
            return _tag_name(release, endpoint)
    raise LivecheckError(f"no published releases at {endpoint}")


def _strategy_page_match(url: str, regex: str, session: requests.Session, timeout: float) -> str:
    text = _get(session, url, github=False, timeout=timeout).text
    pattern = re.compile(regex)
    captured = (match.group(1) if pattern.groups else match.group(0) for match in pattern.finditer(text))
    found = [value for value in captured if value and value.strip()]
    if not found:
        raise LivecheckError(f"no version matched {regex!r} at {url}")
    candidates = [normalise_version(value) for value in found]
    parsed = [(version, value) for value in candidates if (version := _parse_version(value)) is not None]
    if parsed:
        return max(parsed, key=lambda item: item[0])[1]
    return candidates[0]


def fetch_latest_version(
    descriptor: PackageDescriptor,
    strategy: LivecheckSpec | None = None,
    *,
    session: requests.Session | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    spec = strategy or descriptor.livecheck or LivecheckSpec()
    client = session or requests.Session()
    url = _livecheck_url(descriptor, spec)
    if spec.strategy == "github_latest":
        return _strategy_github_latest(url, client, timeout)
    if spec.strategy == "github_releases":
        return _strategy_github_releases(url, client, timeout)
    if spec.regex is None:
        raise LivecheckError(f"{descriptor.identifier}: page_match livecheck needs a regex")
    return _strategy_page_match(url, spec.regex, client, timeout)


def check_for_update(
    descriptor: PackageDescriptor,
    strategy: LivecheckSpec | None = None,
    *,
    session: requests.Session | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> str | None:
    """Return the latest upstream version when it differs from the descriptor's."""

    latest = fetch_latest_version(descriptor, strategy, session=session, timeout=timeout)
    if _versions_differ(descriptor.version, latest):
        return latest
    return None


@dataclass
class LivecheckResult:
    identifier: str
    current: str
    latest: str | None = None
    outdated: bool = False
    auto_updates: bool = False
    cached: bool = False
    error: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "current": self.current,
            "latest": self.latest,
            "outdated": self.outdated,
            "auto_updates": self.auto_updates,
            "cached": self.cached,
            "error": self.error,
        }


@dataclass
class _CacheEntry:
    last_checked: datetime
    latest_version: str


class LivecheckCache:
    """Per-identifier record of the last successful upstream lookup."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._entries: Dict[str, _CacheEntry] = {}

    def load(self) -> None:
        if not self._path.exists():
            self._entries = {}
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            self._entries = {}
            return
        casks = data.get("casks") if isinstance(data, dict) else None
        if not isinstance(casks, dict):
            self._entries = {}
            return
        entries: Dict[str, _CacheEntry] = {}
        for identifier, item in casks.items():
            try:
                checked = datetime.fromisoformat(item["last_checked"])
                if checked.tzinfo is None:
                    checked = checked.replace(tzinfo=timezone.utc)
                entries[identifier] = _CacheEntry(
                    last_checked=checked,
                    latest_version=str(item["latest_version"]),
                )
            except (KeyError, TypeError, ValueError):
                continue
        self._entries = entries

    def save(self) -> None:
        payload = {
            "casks": {
                identifier: {
                    "last_checked": entry.last_checked.isoformat(),
                    "latest_version": entry.latest_version,
                }
                for identifier, entry in sorted(self._entries.items())
            }
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")

    def fresh(self, identifier: str, now: datetime) -> str | None:
        entry = self._entries.get(identifier)
        if entry is None or now - entry.last_checked >= CHECK_INTERVAL:
            return None
        return entry.latest_version

    def store(self, identifier: str, latest: str, now: datetime) -> None:
        self._entries[identifier] = _CacheEntry(last_checked=now, latest_version=latest)


class LivecheckService:
    """Runs livecheck over many descriptors; one failure never stops the batch."""

    def __init__(self, settings: RuntimeSettings, *, session: requests.Session | None = None) -> None:
        self._events = EventLog(settings)
        self._session = session or requests.Session()
        self._cache = LivecheckCache(settings.livecheck_cache_file)

    def run(self, descriptors: Iterable[PackageDescriptor], *, force: bool = False) -> List[LivecheckResult]:
        self._cache.load()
        now = datetime.now(timezone.utc)
        results = [self._check(descriptor, now, force=force) for descriptor in descriptors]
        self._cache.save()
        return results

    def _check(self, descriptor: PackageDescriptor, now: datetime, *, force: bool) -> LivecheckResult:
        result = LivecheckResult(
            identifier=descriptor.identifier,
            current=descriptor.version,
            auto_updates=descriptor.auto_updates,
        )
        latest = None if force else self._cache.fresh(descriptor.identifier, now)
        if latest is not None:
            result.cached = True
        else:
            try:
                latest = fetch_latest_version(descriptor, session=self._session)
            except LivecheckError as exc:
                result.error = str(exc)
                self._events.emit(
                    LIVECHECK_CHECK,
                    identifier=descriptor.identifier,
                    payload={"error": result.error},
                    level="warn",
                    status="error",
                    component="livecheck",
                )
                return result
            self._cache.store(descriptor.identifier, latest, now)
        result.latest = latest
        result.outdated = is_outdated(descriptor.version, latest)
        self._events.emit(
            LIVECHECK_CHECK,
            identifier=descriptor.identifier,
            payload={"current": result.current, "latest": latest, "cached": result.cached},
            status="outdated" if result.outdated else "current",
            component="livecheck",
        )
        return result


__all__ = [
    "CHECK_INTERVAL",
    "LivecheckCache",
    "LivecheckResult",
    "LivecheckService",
    "check_for_update",
    "fetch_latest_version",
    "is_outdated",
    "normalise_version",
]
