"""JSON-backed configuration stores.

Each store is a flat key/value mapping persisted as one JSON file under
``<data_dir>/config``. Reads are synchronous and served from memory.
Writes, deletes and applies are coroutines so the boot sequence can
await them like any other collaborator call.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import shutil
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable

from fabengine.engine.errors import CollaboratorError, PersistenceError

logger = logging.getLogger(__name__)

ApplyHook = Callable[["ConfigStore"], "Awaitable[None] | None"]

# Data directory layout
DATA_SUBDIRS = ("config", "approot", "macros", "db", "temp", "log", "files")

ENGINE_DEFAULTS: dict[str, Any] = {
    "server_port": 80,
    "profile": None,
    "version": None,
    "upload_dir": None,
    "log_level": "info",
}

MACHINE_DEFAULTS: dict[str, Any] = {
    "units": "in",
}


class ConfigStore:
    """A named, persisted configuration mapping."""

    def __init__(
        self,
        name: str,
        path: Path,
        defaults: dict[str, Any] | None = None,
    ):
        self.name = name
        self.path = path
        self._defaults = dict(defaults or {})
        self._data: dict[str, Any] = dict(self._defaults)
        self._apply_hooks: list[ApplyHook] = []

    def load(self) -> None:
        """Load the store from disk, falling back to defaults.

        A missing file is normal on first run. A corrupt file is logged
        and replaced in memory by the defaults; it is rewritten on the
        next save.
        """
        data = dict(self._defaults)
        if self.path.exists():
            try:
                stored = json.loads(self.path.read_text())
                if not isinstance(stored, dict):
                    raise ValueError("top level is not an object")
                data.update(stored)
            except (OSError, ValueError) as e:
                logger.warning(
                    f"Could not read {self.name} config at {self.path} ({e}), "
                    "using defaults"
                )
        self._data = data
        logger.debug(f"Loaded {self.name} config: {len(self._data)} keys")

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def has(self, key: str) -> bool:
        return key in self._data

    def as_dict(self) -> dict[str, Any]:
        return dict(self._data)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        await self.save()

    async def update(self, values: dict[str, Any]) -> None:
        self._data.update(values)
        await self.save()

    async def delete_many(self, keys: Iterable[str]) -> list[str]:
        """Delete keys that are present. Returns the deleted keys."""
        deleted = [key for key in keys if key in self._data]
        for key in deleted:
            del self._data[key]
        await self.save()
        return deleted

    def on_apply(self, hook: ApplyHook) -> None:
        """Register a hook run by apply()."""
        self._apply_hooks.append(hook)

    async def apply(self) -> None:
        """Put the loaded values into effect by running the apply hooks."""
        for hook in self._apply_hooks:
            result = hook(self)
            if inspect.isawaitable(result):
                await result

    async def save(self) -> None:
        try:
            await asyncio.to_thread(self._write)
        except OSError as e:
            raise PersistenceError(
                f"Could not write {self.name} config to {self.path}: {e}"
            ) from e

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(self._data, indent=2, sort_keys=True))
        tmp_path.replace(self.path)


class EngineConfig:
    """All configuration stores plus the engine data directory layout."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        config_dir = self.data_dir / "config"
        self.engine = ConfigStore("engine", config_dir / "engine.json", ENGINE_DEFAULTS)
        self.machine = ConfigStore(
            "machine", config_dir / "machine.json", MACHINE_DEFAULTS
        )
        self.driver = ConfigStore("driver", config_dir / "driver.json")
        self.instance = ConfigStore("instance", config_dir / "instance.json")
        self.opensbp = ConfigStore("opensbp", config_dir / "opensbp.json")
        self.engine.on_apply(_apply_log_level)

    def get_data_dir(self, subdir: str | None = None) -> Path:
        if subdir is None:
            return self.data_dir
        return self.data_dir / subdir

    @property
    def secret_path(self) -> Path:
        return self.get_data_dir("config") / "auth_secret"

    async def create_data_directories(self) -> None:
        """Create the data directory tree. Failure here is fatal."""
        try:
            for subdir in DATA_SUBDIRS:
                self.get_data_dir(subdir).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(
                f"Could not create data directories under {self.data_dir}: {e}"
            ) from e

    async def configure_engine(self) -> None:
        self.engine.load()

    async def configure_machine(self) -> None:
        self.machine.load()

    async def configure_driver(self, driver: Any) -> None:
        """Load driver settings; with a driver, apply pushes them to it."""
        self.driver.load()
        if driver is not None:
            self.driver.on_apply(lambda store: driver.set_many(store.as_dict()))

    async def configure_opensbp(self) -> None:
        self.opensbp.load()

    async def configure_instance(self, driver: Any) -> None:
        """Load the saved machine position; apply restores it on the driver."""
        self.instance.load()
        self.instance.on_apply(lambda store: driver.set_many(store.as_dict()))

    async def clear_app_root(self) -> str:
        """Remove every unpacked app under the approot.

        Returns:
            A short report of what was removed
        """
        approot = self.get_data_dir("approot")
        try:
            removed = await asyncio.to_thread(_empty_directory, approot)
        except OSError as e:
            raise CollaboratorError(f"Could not clear approot {approot}: {e}") from e
        return f"Removed {len(removed)} entries from {approot}"


def _empty_directory(path: Path) -> list[str]:
    removed: list[str] = []
    if not path.exists():
        return removed
    for entry in path.iterdir():
        if entry.is_dir() and not entry.is_symlink():
            shutil.rmtree(entry)
        else:
            entry.unlink()
        removed.append(entry.name)
    return removed


def _apply_log_level(store: ConfigStore) -> None:
    level = str(store.get("log_level") or "info").upper()
    logging.getLogger("fabengine").setLevel(getattr(logging, level, logging.INFO))

