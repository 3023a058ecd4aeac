"""Configuration settings for fabengine."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _default_data_dir() -> Path:
    return Path(os.environ.get("FABENGINE_DATA_DIR", "~/.fabengine")).expanduser()


@dataclass
class Settings:
    """Process-level settings, fixed for the lifetime of the engine.

    Persisted engine configuration (ports, profile, version token) lives
    in the config stores under ``data_dir``; these settings come from the
    command line and environment.
    """

    # Storage
    data_dir: Path = field(default_factory=_default_data_dir)
    version_file: Path = field(default_factory=lambda: Path("version.json"))
    repo_dir: Path | None = None
    profile_default_file: Path = field(
        default_factory=lambda: Path("..") / "site" / ".default"
    )

    # Debugging
    debug: bool = False
    slow: bool = False  # only honoured together with debug

    # Server
    host: str = "0.0.0.0"
    port: int | None = None  # overrides the persisted server_port
    upload_dir: Path | None = None  # overrides the persisted upload_dir

    # Boot
    stage_timeout: float | None = None

    @property
    def latency_enabled(self) -> bool:
        return self.debug and self.slow
