"""Engine state threaded through the boot sequence."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fastapi import FastAPI

    from fabengine.engine.services import MachineHandle


@dataclass
class VersionInfo:
    """Build identity of the running engine."""

    hash: str = ""
    number: str = ""
    type: str = "dev"
    debug: bool = False

    @property
    def identity(self) -> str:
        """Content hash if known, else the semantic number, trimmed."""
        return (self.hash or self.number or "").strip()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class FirmwareInfo:
    """Firmware identity reported by the motion controller."""

    build: str | None = None
    version: str | None = None
    config: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EngineState:
    """Shared context for one engine process.

    Constructed once at process start and passed by reference to every
    boot stage. Only the currently executing stage mutates it.
    """

    version: VersionInfo | None = None
    firmware: FirmwareInfo = field(default_factory=FirmwareInfo)
    machine: "MachineHandle | None" = None
    auth_secret: str | None = None
    server: "FastAPI | None" = None
    _time_synced: bool = field(default=False, repr=False)

    @property
    def time_synced(self) -> bool:
        return self._time_synced

    def mark_time_synced(self) -> bool:
        """Flip the time-synced flag.

        Returns:
            True on the first call only. Later calls leave the flag set
            and return False.
        """
        if self._time_synced:
            return False
        self._time_synced = True
        return True

    @property
    def machine_connected(self) -> bool:
        return self.machine is not None and self.machine.is_connected()

    def info(self) -> dict[str, Any]:
        """Engine and firmware identity, as served by /info."""
        return {
            "firmware": self.firmware.to_dict(),
            "version": self.version.to_dict() if self.version else None,
        }
