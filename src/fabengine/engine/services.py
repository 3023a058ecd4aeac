"""Collaborator interfaces consumed by the boot sequence.

The engine only depends on these protocols. Concrete drivers, databases
and app managers live outside this package and are handed to the engine
through a Services bundle. Any optional collaborator left as None causes
the stages that need it to be skipped.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from fabengine.engine.config_store import EngineConfig


@runtime_checkable
class Driver(Protocol):
    """Motion controller driver as seen by the engine."""

    async def get(self, keys: list[str]) -> list[Any]:
        """Read controller parameters, one value per key."""
        ...

    async def set_units(self, unit: Any) -> None:
        """Switch the controller unit system."""
        ...

    async def set_many(self, values: dict[str, Any]) -> None:
        """Write controller parameters."""
        ...


@runtime_checkable
class CommandRuntime(Protocol):
    """Command language runtime attached to the machine."""

    async def load_commands(self) -> None:
        ...


@runtime_checkable
class MachineHandle(Protocol):
    """Connection to the physical machine."""

    ip: str
    port: int
    driver: Driver
    runtime: CommandRuntime

    def is_connected(self) -> bool:
        ...

    async def connect(self) -> None:
        """Open the hardware connection. Raises on failure."""
        ...

    def disconnect(self) -> None:
        ...

    def set_state(self, state: str) -> None:
        ...

    async def add_job(self, payload: dict[str, Any]) -> Any:
        """Submit a job for execution. Raises on failure."""
        ...


@runtime_checkable
class Loadable(Protocol):
    """Collaborator that loads its persisted content once at boot."""

    async def load(self) -> None:
        ...


@runtime_checkable
class UserDirectory(Protocol):
    """User accounts, used to restore authenticated sessions."""

    async def load(self) -> None:
        ...

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        ...


@runtime_checkable
class Database(Protocol):
    async def configure(self) -> None:
        ...

    async def cleanup(self) -> None:
        """Clear dangling records left behind by a crash."""
        ...


@runtime_checkable
class Dashboard(Protocol):
    """Application manager behind the dashboard UI."""

    async def configure(self) -> None:
        ...

    async def load_apps(self) -> None:
        ...

    def get_app_list(self) -> list[dict[str, Any]]:
        ...

    def get_app_index(self) -> dict[str, dict[str, Any]]:
        ...

    def get_app_files(self, app_id: str) -> list[str]:
        ...


@runtime_checkable
class DetectionDaemon(Protocol):
    """Network beacon announcing this engine on the local network."""

    def start(self) -> None:
        ...


@dataclass
class Services:
    """Bundle of collaborators handed to the boot sequence."""

    config: EngineConfig
    machine: MachineHandle | None = None
    profiles: Loadable | None = None
    users: UserDirectory | None = None
    database: Database | None = None
    dashboard: Dashboard | None = None
    macros: Loadable | None = None
    detection_daemon: DetectionDaemon | None = None
