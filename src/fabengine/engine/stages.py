"""The engine boot stages, in order.

Each stage is a coroutine ``(state, services, settings)``; build_boot_stages
binds services and settings so the Sequencer sees the uniform
``(state) -> None`` contract. Stages that talk to the motion controller
are gated on a live connection and never touch the hardware otherwise.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Any, Awaitable

from fabengine.config import Settings
from fabengine.engine.errors import (
    CollaboratorError,
    ConfigError,
    EngineError,
    MachineConnectionError,
)
from fabengine.engine.platform_defaults import PlatformDefaulter
from fabengine.engine.secret import SecretProvisioner, mask_secret
from fabengine.engine.sequencer import Stage
from fabengine.engine.services import Services
from fabengine.engine.state import EngineState, FirmwareInfo, VersionInfo
from fabengine.engine.version import VersionGate, read_version

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "Default"
FIRMWARE_KEYS = ["fb", "fbs", "fbc"]

# Driver settings known to break current controller firmware
OBSOLETE_DRIVER_KEYS = [
    "1sa", "1tr", "1mi",
    "2sa", "2tr", "2mi",
    "3sa", "3tr", "3mi",
    "4sa", "4tr", "4mi",
    "5sa", "5tr", "5mi",
    "6sa", "6tr", "6mi",
    "ja",
    "6ma", "6po", "6su", "6pm", "6pl",
]


async def _call(what: str, awaitable: Awaitable[Any], error_cls=CollaboratorError) -> Any:
    """Await a collaborator call, classifying unexpected failures."""
    try:
        return await awaitable
    except EngineError:
        raise
    except Exception as e:
        raise error_cls(f"{what}: {e}") from e


def _connected(state: EngineState) -> bool:
    return state.machine_connected


# --- Configuration ---


async def create_data_directories(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Checking engine data directory tree...")
    await services.config.create_data_directories()


async def load_engine_config(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Loading engine configuration...")
    await services.config.configure_engine()


async def first_run_defaults(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Configuring the engine for the first time...")
    await PlatformDefaulter().apply(services.config.engine)
    await services.config.engine.set("init", True)


async def load_profiles(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Loading profiles...")
    await _call("Loading profiles", services.profiles.load())


async def load_users(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Loading users...")
    await _call("Loading users", services.users.load())


async def select_profile(
    state: EngineState, services: Services, settings: Settings
) -> None:
    """Pick a profile when none is configured.

    The site default file wins when it has content; otherwise the
    built-in default profile is used.
    """
    if services.config.engine.get("profile"):
        return
    try:
        profile = settings.profile_default_file.read_text().strip()
    except OSError:
        profile = ""
    profile = profile or DEFAULT_PROFILE
    logger.info(f"Selecting profile {profile}")
    await services.config.engine.set("profile", profile)


async def read_engine_version(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Getting engine version...")
    try:
        state.version = read_version(
            settings.version_file, debug=settings.debug, repo_dir=settings.repo_dir
        )
    except Exception as e:
        state.version = VersionInfo(debug=settings.debug)
        raise ConfigError(f"Could not read engine version: {e}") from e
    logger.info(f"Got engine version: {state.version.to_dict()}")


async def version_gate(
    state: EngineState, services: Services, settings: Settings
) -> None:
    await VersionGate(services.config, debug=settings.debug).run(state.version)


async def apply_engine_config(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Applying engine configuration...")
    await services.config.engine.apply()


# --- Database ---


async def setup_database(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Configuring database...")
    await _call("Configuring database", services.database.configure())


async def clean_database(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Cleaning up database...")
    await _call("Cleaning up database", services.database.cleanup())


# --- Machine ---


async def connect_machine(
    state: EngineState, services: Services, settings: Settings
) -> None:
    state.machine = services.machine
    logger.info("Connecting to the motion controller...")
    try:
        await state.machine.connect()
    except Exception as e:
        logger.error("!!!!!!!!!!!!!!!!!!!!!!!!")
        logger.error("Could not connect to the motion controller.")
        logger.error(f"({e})")
        logger.error("!!!!!!!!!!!!!!!!!!!!!!!!")
        raise MachineConnectionError(str(e)) from e


async def launch_detection_daemon(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Launching detection daemon...")
    services.detection_daemon.start()


async def load_machine_config(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Loading the machine configuration...")
    await _call(
        "Loading machine configuration",
        services.config.configure_machine(),
        ConfigError,
    )


async def set_units(state: EngineState, services: Services, settings: Settings) -> None:
    units = services.config.machine.get("units")
    logger.info(f"Setting units to {units}")
    await _call("Setting units", state.machine.driver.set_units(units))


async def load_driver_config(
    state: EngineState, services: Services, settings: Settings
) -> None:
    if state.machine_connected:
        logger.info("Configuring the motion controller...")
        driver = state.machine.driver
    else:
        logger.warning("Skipping controller configuration due to no connection.")
        driver = None
    await _call(
        "Loading driver configuration",
        services.config.configure_driver(driver),
    )
    if driver is not None:
        await _call("Applying driver configuration", services.config.driver.apply())


async def read_firmware_version(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Getting firmware version...")
    values = await _call(
        "Reading firmware build", state.machine.driver.get(FIRMWARE_KEYS)
    )
    logger.info(f"Firmware information: {values}")
    build, version, config = (list(values or []) + [None, None, None])[:3]
    state.firmware = FirmwareInfo(build=build, version=version, config=config)


async def prune_obsolete_driver_settings(
    state: EngineState, services: Services, settings: Settings
) -> None:
    store = services.config.driver
    present = [key for key in OBSOLETE_DRIVER_KEYS if store.has(key)]
    if not present:
        logger.debug("No obsolete entries in driver config.")
        return
    logger.info(f"Deleting obsolete entries in driver config: {present}")
    await store.delete_many(OBSOLETE_DRIVER_KEYS)
    await _call("Restoring driver configuration", store.apply())


async def load_runtime_commands(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Loading runtime commands...")
    await _call("Loading runtime commands", state.machine.runtime.load_commands())


async def load_runtime_config(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Configuring command runtime...")
    await services.config.configure_opensbp()


async def apply_machine_config(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Applying machine configuration...")
    await services.config.machine.apply()


# --- Dashboard ---


async def configure_dashboard(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Configuring dashboard...")
    await _call("Configuring dashboard", services.dashboard.configure())


async def load_apps(state: EngineState, services: Services, settings: Settings) -> None:
    logger.info("Loading dashboard apps...")
    await _call("Loading dashboard apps", services.dashboard.load_apps())


async def load_macros(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Loading macros...")
    await _call("Loading macros", services.macros.load())


# --- Instance (saved machine position) ---


async def load_instance_config(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Loading instance info...")
    await services.config.configure_instance(state.machine.driver)


async def apply_instance_config(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Applying instance configuration...")
    await _call("Applying instance configuration", services.config.instance.apply())


# --- Server ---


async def provision_secret(
    state: EngineState, services: Services, settings: Settings
) -> None:
    logger.info("Configuring secret key...")
    state.auth_secret = SecretProvisioner(services.config.secret_path).provision()
    logger.info(f"Secret key: {mask_secret(state.auth_secret)}")


async def assemble_server(
    state: EngineState, services: Services, settings: Settings
) -> None:
    from fabengine.server.app import create_server

    logger.info("Setting up the webserver...")
    state.server = create_server(state, services, settings)


def build_boot_stages(services: Services, settings: Settings) -> list[Stage]:
    """Build the ordered boot stage list for one engine."""

    def stage(fn, applies=None, skip_reason: str = "not applicable") -> Stage:
        return Stage(
            name=fn.__name__,
            run=partial(fn, services=services, settings=settings),
            applies=applies,
            skip_reason=skip_reason,
        )

    no_connection = "no connection to motion system"

    return [
        stage(create_data_directories),
        stage(load_engine_config),
        stage(
            first_run_defaults,
            lambda state: not services.config.engine.get("init"),
            "engine already initialized",
        ),
        stage(
            load_profiles,
            lambda state: services.profiles is not None,
            "no profile manager",
        ),
        stage(
            load_users,
            lambda state: services.users is not None,
            "no user directory",
        ),
        stage(select_profile),
        stage(read_engine_version),
        stage(version_gate),
        stage(apply_engine_config),
        stage(
            setup_database,
            lambda state: services.database is not None,
            "no database",
        ),
        stage(
            clean_database,
            lambda state: services.database is not None,
            "no database",
        ),
        stage(
            connect_machine,
            lambda state: services.machine is not None,
            "no machine handle",
        ),
        stage(
            launch_detection_daemon,
            lambda state: services.detection_daemon is not None,
            "no detection daemon",
        ),
        stage(load_machine_config),
        stage(set_units, _connected, no_connection),
        stage(load_driver_config),
        stage(read_firmware_version, _connected, no_connection),
        stage(prune_obsolete_driver_settings),
        stage(load_runtime_commands, _connected, no_connection),
        stage(load_runtime_config, _connected, no_connection),
        stage(apply_machine_config),
        stage(
            configure_dashboard,
            lambda state: services.dashboard is not None,
            "no dashboard",
        ),
        stage(
            load_apps,
            lambda state: services.dashboard is not None,
            "no dashboard",
        ),
        stage(
            load_macros,
            lambda state: services.macros is not None,
            "no macro library",
        ),
        stage(load_instance_config, _connected, no_connection),
        stage(apply_instance_config, _connected, no_connection),
        stage(provision_secret),
        stage(assemble_server),
    ]
