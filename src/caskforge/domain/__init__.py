"""Descriptor domain exports."""

from .descriptor import (
    APPDIR_TOKENS,
    LIVECHECK_STRATEGIES,
    VERSION_TOKENS,
    LivecheckSpec,
    PackageDescriptor,
    SystemCommand,
    UninstallSpec,
)
from .errors import (
    CaskforgeError,
    CaskSyntaxError,
    DescriptorError,
    DownloadError,
    IntegrityError,
    LivecheckError,
    TemplateError,
    UninstallWarning,
)
from .plan import InstallPlan, PlanStep, StepAction, UninstallPlan

__all__ = [
    "APPDIR_TOKENS",
    "LIVECHECK_STRATEGIES",
    "VERSION_TOKENS",
    "CaskforgeError",
    "CaskSyntaxError",
    "DescriptorError",
    "DownloadError",
    "InstallPlan",
    "IntegrityError",
    "LivecheckError",
    "LivecheckSpec",
    "PackageDescriptor",
    "PlanStep",
    "StepAction",
    "SystemCommand",
    "TemplateError",
    "UninstallPlan",
    "UninstallSpec",
    "UninstallWarning",
]
