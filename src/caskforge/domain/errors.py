"""Error taxonomy shared by descriptor parsing, resolution and livecheck."""

from __future__ import annotations


class CaskforgeError(Exception):
    """Base class for every error raised by caskforge."""


class DescriptorError(CaskforgeError, ValueError):
    """Raised when a descriptor payload is invalid."""


class CaskSyntaxError(DescriptorError):
    """Raised when cask DSL text cannot be parsed."""

    def __init__(self, message: str, *, line: int | None = None) -> None:
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class TemplateError(CaskforgeError):
    """Raised when the download URL template is missing or malformed."""


class IntegrityError(CaskforgeError):
    """Raised when an artifact does not hash to the descriptor checksum."""

    def __init__(self, expected: str, actual: str, *, source: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        self.source = source
        where = f" for {source}" if source else ""
        super().__init__(f"sha256 mismatch{where}: expected {expected}, got {actual}")


class DownloadError(CaskforgeError):
    """Raised when an artifact cannot be fetched or read."""


class LivecheckError(CaskforgeError):
    """Raised when the upstream version source cannot be queried or parsed."""


class UninstallWarning(CaskforgeError):
    """Non-fatal problem found while inspecting an uninstall plan."""

    def __init__(self, target: str, message: str) -> None:
        self.target = target
        super().__init__(f"{target}: {message}")

    def to_dict(self) -> dict[str, str]:
        return {"target": self.target, "message": str(self)}
