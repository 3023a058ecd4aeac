"""Tests for config stores and first-run platform defaults."""

import json
import logging

import pytest

from fabengine.engine.config_store import DATA_SUBDIRS, ConfigStore, EngineConfig
from fabengine.engine.errors import CollaboratorError, PersistenceError
from fabengine.engine.platform_defaults import (
    LINUX_SERIAL_PORT,
    OSX_SERVER_PORT,
    PlatformDefaulter,
)

from tests.fakes import FakeDriver


class TestConfigStore:
    """Tests for a single JSON-backed store."""

    def test_defaults_without_file(self, tmp_path):
        store = ConfigStore("engine", tmp_path / "engine.json", {"server_port": 80})
        store.load()
        assert store.get("server_port") == 80
        assert store.has("server_port")
        assert not store.has("profile")

    @pytest.mark.asyncio
    async def test_set_persists(self, tmp_path):
        path = tmp_path / "config" / "engine.json"
        store = ConfigStore("engine", path)

        await store.set("profile", "shopbot")

        assert json.loads(path.read_text()) == {"profile": "shopbot"}
        reloaded = ConfigStore("engine", path)
        reloaded.load()
        assert reloaded.get("profile") == "shopbot"

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path, caplog):
        path = tmp_path / "engine.json"
        path.write_text("[1, 2")
        store = ConfigStore("engine", path, {"server_port": 80})

        with caplog.at_level(logging.WARNING):
            store.load()

        assert store.as_dict() == {"server_port": 80}
        assert "using defaults" in caplog.text

    @pytest.mark.asyncio
    async def test_delete_many_reports_present_keys(self, tmp_path):
        store = ConfigStore("driver", tmp_path / "driver.json")
        await store.update({"a": 1, "b": 2})

        deleted = await store.delete_many(["a", "missing"])

        assert deleted == ["a"]
        assert store.as_dict() == {"b": 2}

    @pytest.mark.asyncio
    async def test_apply_runs_sync_and_async_hooks(self, tmp_path):
        store = ConfigStore("driver", tmp_path / "driver.json")
        seen = []

        async def async_hook(s):
            seen.append("async")

        store.on_apply(lambda s: seen.append("sync"))
        store.on_apply(async_hook)
        await store.apply()

        assert seen == ["sync", "async"]

    @pytest.mark.asyncio
    async def test_save_failure_is_persistence_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = ConfigStore("engine", blocker / "engine.json")

        with pytest.raises(PersistenceError):
            await store.set("profile", "x")


class TestEngineConfig:
    """Tests for the data directory layout and store wiring."""

    @pytest.mark.asyncio
    async def test_create_data_directories(self, tmp_path):
        config = EngineConfig(tmp_path / "data")
        await config.create_data_directories()
        for subdir in DATA_SUBDIRS:
            assert config.get_data_dir(subdir).is_dir()

    @pytest.mark.asyncio
    async def test_create_data_directories_failure(self, tmp_path):
        blocker = tmp_path / "data"
        blocker.write_text("not a directory")
        with pytest.raises(PersistenceError):
            await EngineConfig(blocker).create_data_directories()

    def test_secret_path(self, tmp_path):
        config = EngineConfig(tmp_path)
        assert config.secret_path == tmp_path / "config" / "auth_secret"

    @pytest.mark.asyncio
    async def test_driver_apply_pushes_values(self, tmp_path):
        config = EngineConfig(tmp_path)
        driver = FakeDriver()
        await config.configure_driver(driver)
        await config.driver.update({"xy_speed": 4})

        await config.driver.apply()

        assert driver.calls == [("set_many", {"xy_speed": 4})]

    @pytest.mark.asyncio
    async def test_driver_without_hardware_has_no_hook(self, tmp_path):
        config = EngineConfig(tmp_path)
        await config.configure_driver(None)
        await config.driver.apply()

    @pytest.mark.asyncio
    async def test_engine_apply_sets_log_level(self, tmp_path):
        config = EngineConfig(tmp_path)
        await config.configure_engine()
        await config.engine.set("log_level", "warning")

        await config.engine.apply()

        assert logging.getLogger("fabengine").level == logging.WARNING
        logging.getLogger("fabengine").setLevel(logging.NOTSET)

    @pytest.mark.asyncio
    async def test_clear_app_root(self, tmp_path):
        config = EngineConfig(tmp_path)
        await config.create_data_directories()
        approot = config.get_data_dir("approot")
        (approot / "app-a").mkdir()
        (approot / "app-a" / "index.html").write_text("<html></html>")
        (approot / "loose.txt").write_text("x")

        report = await config.clear_app_root()

        assert "2 entries" in report
        assert list(approot.iterdir()) == []

    @pytest.mark.asyncio
    async def test_clear_app_root_failure(self, tmp_path, monkeypatch):
        config = EngineConfig(tmp_path)
        await config.create_data_directories()
        (config.get_data_dir("approot") / "x").write_text("x")

        def boom(self, *args, **kwargs):
            raise OSError("device busy")

        monkeypatch.setattr("pathlib.Path.unlink", boom)
        with pytest.raises(CollaboratorError):
            await config.clear_app_root()


class TestPlatformDefaulter:
    """Tests for first-run platform defaults."""

    def test_linux(self):
        values = PlatformDefaulter(platform="linux").defaults()
        assert values == {
            "control_port_linux": LINUX_SERIAL_PORT,
            "data_port_linux": LINUX_SERIAL_PORT,
        }

    def test_darwin_two_devices(self):
        defaulter = PlatformDefaulter(
            platform="darwin",
            list_devices=lambda pattern: ["/dev/cu.usbmodem1", "/dev/cu.usbmodem2"],
        )
        assert defaulter.defaults() == {
            "server_port": OSX_SERVER_PORT,
            "control_port_osx": "/dev/cu.usbmodem1",
            "data_port_osx": "/dev/cu.usbmodem2",
        }

    def test_darwin_one_device_shared(self):
        defaulter = PlatformDefaulter(
            platform="darwin", list_devices=lambda pattern: ["/dev/cu.usbmodem1"]
        )
        values = defaulter.defaults()
        assert values["control_port_osx"] == values["data_port_osx"]

    def test_darwin_no_devices_leaves_ports_unset(self):
        defaulter = PlatformDefaulter(platform="darwin", list_devices=lambda p: [])
        assert defaulter.defaults() == {"server_port": OSX_SERVER_PORT}

    def test_other_platform(self):
        assert PlatformDefaulter(platform="win32").defaults() == {}

    @pytest.mark.asyncio
    async def test_apply_writes_through_store(self, tmp_path):
        store = ConfigStore("engine", tmp_path / "engine.json")
        await PlatformDefaulter(platform="linux").apply(store)
        assert store.get("control_port_linux") == LINUX_SERIAL_PORT
        assert (tmp_path / "engine.json").exists()
