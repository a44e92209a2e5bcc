"""Install and uninstall plans handed to the host for execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, Tuple


class StepAction(str, Enum):
    DOWNLOAD = "download"
    VERIFY = "verify"
    EXTRACT = "extract"
    PLACE = "place"
    RUN = "run"
    QUIT = "quit"
    REMOVE = "remove"
    TRASH = "trash"


@dataclass(frozen=True)
class PlanStep:
    action: StepAction
    target: str
    args: Tuple[str, ...] = ()
    sudo: bool = False
    best_effort: bool = False

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"action": self.action.value, "target": self.target}
        if self.args:
            payload["args"] = list(self.args)
        if self.action == StepAction.RUN:
            payload["sudo"] = self.sudo
        if self.best_effort:
            payload["best_effort"] = True
        return payload


@dataclass(frozen=True)
class InstallPlan:
    identifier: str
    version: str
    url: str
    checksum: str
    appdir: str
    steps: Tuple[PlanStep, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[PlanStep]:
        return iter(self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "version": self.version,
            "url": self.url,
            "sha256": self.checksum,
            "appdir": self.appdir,
            "steps": [step.to_dict() for step in self.steps],
        }


@dataclass(frozen=True)
class UninstallPlan:
    identifier: str
    zap: bool
    steps: Tuple[PlanStep, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[PlanStep]:
        return iter(self.steps)

    def targets(self, action: StepAction) -> Tuple[str, ...]:
        return tuple(step.target for step in self.steps if step.action == action)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "zap": self.zap,
            "steps": [step.to_dict() for step in self.steps],
        }
