"""The Engine: one running controller host.

Creating an Engine does almost nothing. start() runs the boot sequence,
which leaves an assembled server on the engine state; serve() then
listens for connections.
"""

from __future__ import annotations

import logging
import subprocess
import sys
import threading
from datetime import datetime, timezone
from typing import Any

from fabengine.config import Settings
from fabengine.engine.config_store import EngineConfig
from fabengine.engine.errors import BootError
from fabengine.engine.sequencer import FailureCallback, Sequencer
from fabengine.engine.services import Services
from fabengine.engine.stages import build_boot_stages
from fabengine.engine.state import EngineState

logger = logging.getLogger(__name__)

_time_lock = threading.Lock()


def _parse_utc(value: Any) -> datetime:
    """Parse a UTC timestamp given as epoch milliseconds or ISO 8601."""
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def set_time(state: EngineState, utc: Any) -> bool:
    """Set the system clock from a client-supplied UTC time.

    Only the first request per process has any effect. Blocks while
    timedatectl runs, so async callers should use a worker thread.

    Returns:
        True if the clock was set by this call
    """
    with _time_lock:
        if state.time_synced:
            logger.debug("Time already synced, ignoring time-set request")
            return False
        when = _parse_utc(utc)
        state.mark_time_synced()

    stamp = when.strftime("%Y-%m-%d %H:%M:%S")
    logger.debug(f"Setting the time to {stamp} UTC")
    if not sys.platform.startswith("linux"):
        logger.warning(f"Not setting system time on {sys.platform}")
        return True
    try:
        result = subprocess.run(
            ["timedatectl", "set-time", f"{stamp} UTC"],
            capture_output=True,
            text=True,
            timeout=10,
        )
        logger.debug(result.stdout or result.stderr)
    except (subprocess.TimeoutExpired, FileNotFoundError) as e:
        logger.error(f"Could not set system time: {e}")
    return True


class Engine:
    """Top level object for a running engine instance."""

    def __init__(self, settings: Settings | None = None, services: Services | None = None):
        self.settings = settings or Settings()
        self.services = services or Services(config=EngineConfig(self.settings.data_dir))
        self.state = EngineState()
        self.sequencer: Sequencer | None = None

    @property
    def config(self) -> EngineConfig:
        return self.services.config

    async def start(self, on_failure: FailureCallback | None = None) -> EngineState:
        """Run the boot sequence.

        Raises:
            BootError: If a stage failed fatally. The engine is then
                unusable and the process is expected to exit.
        """
        self.sequencer = Sequencer(
            build_boot_stages(self.services, self.settings),
            on_failure=on_failure,
            stage_timeout=self.settings.stage_timeout,
        )
        try:
            await self.sequencer.run(self.state)
        except BootError:
            logger.error("Engine startup aborted")
            raise
        logger.info("Engine startup complete")
        return self.state

    @property
    def port(self) -> int:
        return int(self.settings.port or self.config.engine.get("server_port") or 80)

    async def serve(self) -> None:
        """Listen for connections on all interfaces until shut down."""
        import uvicorn

        if self.state.server is None:
            raise RuntimeError("Engine has not been started")

        config = uvicorn.Config(
            self.state.server,
            host=self.settings.host,
            port=self.port,
            log_level="debug" if self.settings.debug else "info",
        )
        server = uvicorn.Server(config)
        logger.info(f"Engine listening at http://{self.settings.host}:{self.port}")
        try:
            await server.serve()
        finally:
            self.stop()

    def stop(self) -> None:
        """Disconnect the machine before the process exits."""
        machine = self.state.machine
        if machine is not None:
            machine.disconnect()
            machine.set_state("stopped")
        logger.info("Engine stopped")

    def get_info(self) -> dict[str, Any]:
        return self.state.info()

    def set_time(self, utc: Any) -> bool:
        return set_time(self.state, utc)
