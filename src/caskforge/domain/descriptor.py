"""Immutable package descriptor value objects."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Tuple

from .errors import DescriptorError

_IDENTIFIER_PATTERN = re.compile(r"[a-z0-9][a-z0-9._+@-]*")
_VERSION_PATTERN = re.compile(r"[A-Za-z0-9][A-Za-z0-9._,+:-]*")
_SHA256_PATTERN = re.compile(r"[0-9a-fA-F]{64}")

# Placeholder tokens understood in templates; the DSL spelling is canonical.
VERSION_TOKENS = ("#{version}", "${version}")
APPDIR_TOKENS = ("#{appdir}", "${appdir}")

LIVECHECK_STRATEGIES = ("github_latest", "github_releases", "page_match")
LIVECHECK_URL_SYMBOLS = ("url", "homepage", "self")


@dataclass(frozen=True)
class SystemCommand:
    """A command the host runs after installation."""

    command: str
    args: Tuple[str, ...] = ()
    sudo: bool = False

    def __post_init__(self) -> None:
        if not self.command.strip():
            raise DescriptorError("postflight command must be a non-empty string")
        object.__setattr__(self, "args", tuple(str(arg) for arg in self.args))

    def to_dict(self) -> Dict[str, Any]:
        return {"command": self.command, "args": list(self.args), "sudo": self.sudo}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SystemCommand":
        return cls(
            command=str(data["command"]),
            args=tuple(data.get("args") or ()),
            sudo=bool(data.get("sudo", False)),
        )


@dataclass(frozen=True)
class UninstallSpec:
    """How to stop the running application before its bundle is removed."""

    quit: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "quit", tuple(str(item) for item in self.quit))
        if any(not item.strip() for item in self.quit):
            raise DescriptorError("uninstall quit identifiers must be non-empty")

    def to_dict(self) -> Dict[str, Any]:
        if len(self.quit) == 1:
            return {"quit": self.quit[0]}
        return {"quit": list(self.quit)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "UninstallSpec":
        if not data:
            return cls()
        value = data.get("quit") or ()
        if isinstance(value, str):
            value = (value,)
        return cls(quit=tuple(value))


@dataclass(frozen=True)
class LivecheckSpec:
    """Policy for discovering the latest upstream version."""

    url: str = "url"
    strategy: str = "github_latest"
    regex: str | None = None

    def __post_init__(self) -> None:
        if self.url.startswith(":"):
            object.__setattr__(self, "url", self.url[1:])
        if not self.url.strip():
            raise DescriptorError("livecheck url must be a non-empty string")
        if self.strategy not in LIVECHECK_STRATEGIES:
            raise DescriptorError(
                f"unsupported livecheck strategy '{self.strategy}' (expected one of {', '.join(LIVECHECK_STRATEGIES)})"
            )
        if self.strategy == "page_match":
            if not self.regex:
                raise DescriptorError("livecheck strategy page_match requires a regex")
            try:
                re.compile(self.regex)
            except re.error as exc:
                raise DescriptorError(f"livecheck regex invalid: {exc}") from exc

    @property
    def is_symbolic(self) -> bool:
        return self.url in LIVECHECK_URL_SYMBOLS

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"url": self.url, "strategy": self.strategy}
        if self.regex:
            payload["regex"] = self.regex
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LivecheckSpec":
        return cls(
            url=str(data.get("url", "url")),
            strategy=str(data.get("strategy", "github_latest")),
            regex=data.get("regex"),
        )


@dataclass(frozen=True)
class PackageDescriptor:
    """One installable version of one application."""

    identifier: str
    version: str
    checksum: str
    download_url_template: str
    display_name: str
    description: str
    homepage: str
    install_target: str
    post_install_actions: Tuple[SystemCommand, ...] = ()
    uninstall_spec: UninstallSpec = field(default_factory=UninstallSpec)
    residual_paths: Tuple[str, ...] = ()
    livecheck: LivecheckSpec | None = None
    auto_updates: bool = False

    def __post_init__(self) -> None:
        if not _IDENTIFIER_PATTERN.fullmatch(self.identifier):
            raise DescriptorError(f"identifier '{self.identifier}' must be a lowercase token")
        if not _VERSION_PATTERN.fullmatch(self.version):
            raise DescriptorError(f"version '{self.version}' contains unsupported characters")
        if not _SHA256_PATTERN.fullmatch(self.checksum):
            raise DescriptorError("sha256 must be a 64 character hex digest")
        object.__setattr__(self, "checksum", self.checksum.lower())
        if not self.install_target.strip() or "/" in self.install_target:
            raise DescriptorError("app must be a bundle name without path separators")
        for name in ("display_name", "description", "homepage", "download_url_template"):
            if not str(getattr(self, name)).strip():
                raise DescriptorError(f"{name} must be a non-empty string")

        object.__setattr__(self, "post_install_actions", tuple(self.post_install_actions))
        paths: List[str] = []
        for path in self.residual_paths:
            path = str(path)
            if not path.strip():
                raise DescriptorError("zap trash entries must be non-empty")
            if any(token in path for token in VERSION_TOKENS):
                raise DescriptorError(f"zap trash entry '{path}' must not depend on the version")
            if path not in paths:
                paths.append(path)
        object.__setattr__(self, "residual_paths", tuple(paths))

    def supersede(self, version: str, checksum: str) -> "PackageDescriptor":
        """Return the next revision; version and checksum always change together."""

        if version == self.version and checksum.lower() == self.checksum:
            raise DescriptorError(f"{self.identifier} is already at {version}")
        if version == self.version:
            raise DescriptorError("checksum changed without a version change")
        if checksum.lower() == self.checksum:
            raise DescriptorError("version changed without a checksum change")
        return replace(self, version=version, checksum=checksum)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "identifier": self.identifier,
            "version": self.version,
            "sha256": self.checksum,
            "url": self.download_url_template,
            "name": self.display_name,
            "desc": self.description,
            "homepage": self.homepage,
        }
        if self.livecheck is not None:
            payload["livecheck"] = self.livecheck.to_dict()
        payload["auto_updates"] = self.auto_updates
        payload["app"] = self.install_target
        if self.post_install_actions:
            payload["postflight"] = [action.to_dict() for action in self.post_install_actions]
        if self.uninstall_spec.quit:
            payload["uninstall"] = self.uninstall_spec.to_dict()
        if self.residual_paths:
            payload["zap"] = {"trash": list(self.residual_paths)}
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PackageDescriptor":
        try:
            postflight = data.get("postflight") or []
            if isinstance(postflight, Mapping):
                postflight = [postflight]
            livecheck = data.get("livecheck")
            return cls(
                identifier=str(data["identifier"]),
                version=str(data["version"]),
                checksum=str(data["sha256"]),
                download_url_template=str(data["url"]),
                display_name=str(data["name"]),
                description=str(data["desc"]),
                homepage=str(data["homepage"]),
                install_target=str(data["app"]),
                post_install_actions=tuple(SystemCommand.from_dict(item) for item in postflight),
                uninstall_spec=UninstallSpec.from_dict(data.get("uninstall")),
                residual_paths=tuple((data.get("zap") or {}).get("trash") or ()),
                livecheck=LivecheckSpec.from_dict(livecheck) if livecheck else None,
                auto_updates=bool(data.get("auto_updates", False)),
            )
        except KeyError as exc:
            raise DescriptorError(f"descriptor missing required key {exc.args[0]!r}") from exc
