"""In-memory collaborators that record how the engine uses them."""

from __future__ import annotations

from typing import Any


class FakeDriver:
    """Driver that records every call made to it."""

    def __init__(self, firmware: list[Any] | None = None):
        self.calls: list[tuple] = []
        self.firmware = firmware if firmware is not None else ["100.26", "0.99", "sb"]

    async def get(self, keys: list[str]) -> list[Any]:
        self.calls.append(("get", list(keys)))
        return self.firmware

    async def set_units(self, unit: Any) -> None:
        self.calls.append(("set_units", unit))

    async def set_many(self, values: dict[str, Any]) -> None:
        self.calls.append(("set_many", dict(values)))


class FakeRuntime:
    def __init__(self):
        self.calls: list[str] = []

    async def load_commands(self) -> None:
        self.calls.append("load_commands")


class FakeMachine:
    """Machine handle; connect() succeeds unless connect_error is set."""

    def __init__(
        self,
        connect_error: Exception | None = None,
        job_error: Exception | None = None,
        ip: str = "192.168.1.42",
        port: int = 80,
    ):
        self.ip = ip
        self.port = port
        self.driver = FakeDriver()
        self.runtime = FakeRuntime()
        self.connect_error = connect_error
        self.job_error = job_error
        self.connected = False
        self.state = "idle"
        self.jobs: list[dict[str, Any]] = []
        self.credentials = "not-for-frames"

    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False

    def set_state(self, state: str) -> None:
        self.state = state

    async def add_job(self, payload: dict[str, Any]) -> Any:
        if self.job_error is not None:
            raise self.job_error
        self.jobs.append(payload)
        return {"job_id": len(self.jobs)}


class FakeDashboard:
    def __init__(self):
        self.calls: list[str] = []
        self.apps = {
            "job-manager": {"id": "job-manager", "name": "Job Manager"},
            "editor": {"id": "editor", "name": "Editor"},
        }

    async def configure(self) -> None:
        self.calls.append("configure")

    async def load_apps(self) -> None:
        self.calls.append("load_apps")

    def get_app_list(self) -> list[dict[str, Any]]:
        return list(self.apps.values())

    def get_app_index(self) -> dict[str, dict[str, Any]]:
        return self.apps

    def get_app_files(self, app_id: str) -> list[str]:
        return ["index.html", "app.js"]


class FakeUsers:
    def __init__(self, users: dict[str, dict[str, Any]] | None = None):
        self.users = users or {"admin": {"username": "admin", "is_admin": True}}
        self.loaded = False

    async def load(self) -> None:
        self.loaded = True

    def get_user(self, user_id: str) -> dict[str, Any] | None:
        return self.users.get(user_id)
