"""Engine bootstrap: state, stages and the Sequencer that runs them.

Usage:
    engine = Engine(Settings(debug=True), Services(config=EngineConfig(path)))
    state = await engine.start()
    await engine.serve()
"""

from fabengine.engine.config_store import ConfigStore, EngineConfig
from fabengine.engine.engine import Engine
from fabengine.engine.errors import (
    BootError,
    CollaboratorError,
    ConfigError,
    EngineError,
    ErrorKind,
    MachineConnectionError,
    PersistenceError,
    StageTimeout,
)
from fabengine.engine.sequencer import Sequencer, Stage
from fabengine.engine.services import Services
from fabengine.engine.state import EngineState, FirmwareInfo, VersionInfo

__all__ = [
    # Engine
    "Engine",
    "EngineState",
    "FirmwareInfo",
    "VersionInfo",
    "Services",
    # Configuration
    "ConfigStore",
    "EngineConfig",
    # Boot
    "Sequencer",
    "Stage",
    # Errors
    "BootError",
    "CollaboratorError",
    "ConfigError",
    "EngineError",
    "ErrorKind",
    "MachineConnectionError",
    "PersistenceError",
    "StageTimeout",
]
