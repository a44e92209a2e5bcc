"""Resolve a package descriptor into concrete URLs, integrity checks and plans."""

from __future__ import annotations

import hmac
import os
import re
from hashlib import sha256
from pathlib import Path
from typing import Callable, List
from urllib.parse import unquote, urlparse

import requests

from caskforge.domain import (
    DownloadError,
    InstallPlan,
    IntegrityError,
    PackageDescriptor,
    PlanStep,
    StepAction,
    TemplateError,
    UninstallPlan,
    UninstallWarning,
)

DEFAULT_APPDIR = "/Applications"
USER_AGENT = "caskforge"
CHUNK_SIZE = 1024 * 1024

_INTERPOLATION = re.compile(r"[#$]\{([^{}]*)\}")
_OPENER = re.compile(r"[#$]\{")


def _interpolate(template: str, values: dict[str, str], *, what: str) -> str:
    leftover = _INTERPOLATION.sub("", template)
    if _OPENER.search(leftover):
        raise TemplateError(f"{what} has an unterminated interpolation: {template}")
    for match in _INTERPOLATION.finditer(template):
        name = match.group(1).strip()
        if not name:
            raise TemplateError(f"{what} has an empty interpolation: {template}")
        if name not in values:
            raise TemplateError(f"{what} references unknown value '{name}': {template}")
    # A single substitution pass; replacement text is never rescanned.
    return _INTERPOLATION.sub(lambda match: values[match.group(1).strip()], template)


def resolve_download_url(descriptor: PackageDescriptor) -> str:
    template = descriptor.download_url_template
    if not any(match.group(1).strip() == "version" for match in _INTERPOLATION.finditer(template)):
        raise TemplateError(f"url template has no version placeholder: {template}")
    return _interpolate(template, {"version": descriptor.version}, what="url template")


def verify_artifact(data: bytes, descriptor: PackageDescriptor, *, source: str | None = None) -> None:
    """Raise IntegrityError unless ``data`` hashes to the descriptor checksum."""

    actual = sha256(data).hexdigest()
    _compare(actual, descriptor, source=source)


def verify_file(path: Path, descriptor: PackageDescriptor) -> None:
    digest = sha256()
    try:
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as exc:
        raise DownloadError(f"cannot read artifact {path}: {exc.strerror or exc}") from exc
    _compare(digest.hexdigest(), descriptor, source=str(path))


def _compare(actual: str, descriptor: PackageDescriptor, *, source: str | None) -> None:
    expected = descriptor.checksum.lower()
    if not hmac.compare_digest(actual.lower(), expected):
        raise IntegrityError(expected, actual, source=source)


def fetch_artifact(
    url: str,
    *,
    session: requests.Session | None = None,
    timeout: float = 60,
) -> bytes:
    client = session or requests.Session()
    try:
        response = client.get(url, headers={"User-Agent": USER_AGENT}, timeout=timeout)
    except requests.RequestException as exc:
        raise DownloadError(f"failed to download {url}: {exc}") from exc
    if response.status_code >= 400:
        raise DownloadError(f"failed to download {url}: HTTP {response.status_code}")
    return response.content


def _artifact_name(url: str) -> str:
    name = unquote(Path(urlparse(url).path).name)
    return name or "artifact"


def _bundle_path(descriptor: PackageDescriptor, appdir: str) -> str:
    return f"{appdir.rstrip('/')}/{descriptor.install_target}"


def plan_install(descriptor: PackageDescriptor, *, appdir: str = DEFAULT_APPDIR) -> InstallPlan:
    url = resolve_download_url(descriptor)
    values = {"appdir": appdir.rstrip("/") or "/", "version": descriptor.version}
    steps: List[PlanStep] = [
        PlanStep(StepAction.DOWNLOAD, url),
        PlanStep(StepAction.VERIFY, descriptor.checksum),
        PlanStep(StepAction.EXTRACT, _artifact_name(url)),
        PlanStep(StepAction.PLACE, _bundle_path(descriptor, appdir)),
    ]
    for action in descriptor.post_install_actions:
        args = tuple(_interpolate(arg, values, what="postflight argument") for arg in action.args)
        steps.append(PlanStep(StepAction.RUN, action.command, args=args, sudo=action.sudo))
    return InstallPlan(
        identifier=descriptor.identifier,
        version=descriptor.version,
        url=url,
        checksum=descriptor.checksum,
        appdir=appdir,
        steps=tuple(steps),
    )


def expand_home(path: str, home: str) -> str:
    if path == "~":
        return home
    if path.startswith("~/"):
        return f"{home.rstrip('/')}/{path[2:]}"
    return path


def plan_uninstall(
    descriptor: PackageDescriptor,
    zap: bool = False,
    *,
    appdir: str = DEFAULT_APPDIR,
    home: str | None = None,
) -> UninstallPlan:
    steps: List[PlanStep] = [
        PlanStep(StepAction.QUIT, bundle_id, best_effort=True) for bundle_id in descriptor.uninstall_spec.quit
    ]
    steps.append(PlanStep(StepAction.REMOVE, _bundle_path(descriptor, appdir)))
    if zap:
        user_home = home if home is not None else str(Path.home())
        seen: set[str] = set()
        for path in descriptor.residual_paths:
            expanded = expand_home(path, user_home)
            if expanded in seen:
                continue
            seen.add(expanded)
            steps.append(PlanStep(StepAction.TRASH, expanded, best_effort=True))
    return UninstallPlan(identifier=descriptor.identifier, zap=zap, steps=tuple(steps))


def inspect_uninstall(
    plan: UninstallPlan,
    exists: Callable[[str], bool] = os.path.exists,
) -> List[UninstallWarning]:
    """Report removal targets that are already absent; never raises for them."""

    warnings: List[UninstallWarning] = []
    for step in plan:
        if step.action in {StepAction.REMOVE, StepAction.TRASH} and not exists(step.target):
            warnings.append(UninstallWarning(step.target, "not found, skipping"))
    return warnings


__all__ = [
    "DEFAULT_APPDIR",
    "expand_home",
    "fetch_artifact",
    "inspect_uninstall",
    "plan_install",
    "plan_uninstall",
    "resolve_download_url",
    "verify_artifact",
    "verify_file",
]
