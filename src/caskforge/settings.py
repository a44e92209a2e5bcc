"""Runtime settings for caskforge."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from caskforge import __version__

DEFAULT_APPDIR = Path("/Applications")


@dataclass(frozen=True)
class RuntimeSettings:
    home_dir: Path
    state_dir: Path
    log_dir: Path
    casks_dir: Path
    appdir: Path = DEFAULT_APPDIR
    user_home: Path = Path.home()
    cli_version: str = __version__

    @property
    def livecheck_cache_file(self) -> Path:
        return self.state_dir / "livecheck.json"


def _default_home_dir() -> Path:
    override = os.environ.get("CASKFORGE_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".caskforge"


def load_settings() -> RuntimeSettings:
    base = _default_home_dir()
    casks_override = os.environ.get("CASKFORGE_CASKS_DIR")
    appdir_override = os.environ.get("CASKFORGE_APPDIR")
    return RuntimeSettings(
        home_dir=base,
        state_dir=base / "state",
        log_dir=base / "logs",
        casks_dir=Path(casks_override).expanduser() if casks_override else Path.cwd() / "Casks",
        appdir=Path(appdir_override).expanduser() if appdir_override else DEFAULT_APPDIR,
        user_home=Path.home(),
    )


SETTINGS = load_settings()
