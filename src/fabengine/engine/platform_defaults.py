"""First-run configuration defaults per platform."""

from __future__ import annotations

import glob
import logging
import sys
from typing import Any, Callable

from fabengine.engine.config_store import ConfigStore

logger = logging.getLogger(__name__)

LINUX_SERIAL_PORT = "/dev/ttyACM0"
OSX_SERIAL_GLOB = "/dev/cu.usbmodem*"
OSX_SERVER_PORT = 9876


class PlatformDefaulter:
    """Seeds serial port and network defaults on the first ever run."""

    def __init__(
        self,
        platform: str | None = None,
        list_devices: Callable[[str], list[str]] | None = None,
    ):
        self.platform = platform or sys.platform
        self._list_devices = list_devices or _glob_sorted

    def defaults(self) -> dict[str, Any]:
        """Compute the defaults for this platform.

        An empty mapping means the platform has no special defaults or no
        candidate devices were found.
        """
        if self.platform.startswith("linux"):
            return {
                "control_port_linux": LINUX_SERIAL_PORT,
                "data_port_linux": LINUX_SERIAL_PORT,
            }

        if self.platform == "darwin":
            values: dict[str, Any] = {"server_port": OSX_SERVER_PORT}
            devices = self._list_devices(OSX_SERIAL_GLOB)
            if devices:
                values["control_port_osx"] = devices[0]
                values["data_port_osx"] = devices[1] if len(devices) > 1 else devices[0]
            else:
                logger.warning(f"No serial devices matching {OSX_SERIAL_GLOB}")
            return values

        return {}

    async def apply(self, store: ConfigStore) -> dict[str, Any]:
        """Write the platform defaults through the store."""
        values = self.defaults()
        if values:
            logger.info(f"Applying first-run defaults for {self.platform}: {values}")
            await store.update(values)
        else:
            logger.info(f"No first-run defaults for {self.platform}")
        return values


def _glob_sorted(pattern: str) -> list[str]:
    return sorted(glob.glob(pattern))
