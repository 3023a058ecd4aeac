"""Build identity discovery and the approot version gate."""

from __future__ import annotations

import json
import logging
import random
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from fabengine.engine.state import VersionInfo

if TYPE_CHECKING:
    from fabengine.engine.config_store import EngineConfig

logger = logging.getLogger(__name__)

# Debug-mode cache-busting tokens are drawn from [DEBUG_TOKEN_MIN, DEBUG_TOKEN_MAX)
DEBUG_TOKEN_MIN = 10000
DEBUG_TOKEN_MAX = 99999


def _get_git_hash(repo_dir: Path | None = None) -> str:
    """Get the current commit hash, or an empty string."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--verify", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
            cwd=repo_dir,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (subprocess.TimeoutExpired, FileNotFoundError, NotADirectoryError):
        pass
    return ""


def read_version(
    version_file: Path,
    debug: bool = False,
    repo_dir: Path | None = None,
) -> VersionInfo:
    """Determine the version of this engine.

    Production builds ship a version.json with a ``number`` field, which
    makes the build a release. Without one the build is a dev build
    identified only by its git hash.
    """
    version = VersionInfo(hash=_get_git_hash(repo_dir), debug=debug)
    try:
        data = json.loads(Path(version_file).read_text())
    except OSError:
        version.type = "dev"
        return version
    except ValueError as e:
        logger.warning(f"Unparsable version file {version_file}: {e}")
        version.type = "dev"
        return version

    if isinstance(data, dict) and data.get("number"):
        version.number = str(data["number"])
        version.type = "release"
    return version


def random_version_token() -> str:
    return str(random.randrange(DEBUG_TOKEN_MIN, DEBUG_TOKEN_MAX))


class GateAction(str, Enum):
    """What the version gate did."""

    UNCHANGED = "unchanged"
    UPGRADED = "upgraded"
    DEBUG = "debug"


@dataclass
class GateResult:
    action: GateAction
    token: str
    cache_cleared: bool


class VersionGate:
    """Keeps the persisted version token in step with the running build.

    Clients cache app assets under a URL segment holding the version
    token. When the build changes, or on every debug run, the token is
    replaced and the unpacked apps are cleared.
    """

    def __init__(self, config: "EngineConfig", debug: bool = False):
        self.config = config
        self.debug = debug

    async def run(self, version: VersionInfo | None) -> GateResult:
        current = version.identity if version else ""
        last = (self.config.engine.get("version") or "").strip()

        if self.debug or (version is not None and version.debug):
            logger.info("Running in debug mode - clearing the approot.")
            token = random_version_token()
            logger.info(f"Setting engine version to random token {token}")
            await self.config.engine.set("version", token)
            cleared = await self._clear_app_root()
            return GateResult(GateAction.DEBUG, token, cleared)

        logger.debug(f"Previous engine version: {last}")
        logger.debug(f" Current engine version: {current}")

        if last == current:
            logger.info("Engine version is unchanged since last run.")
            return GateResult(GateAction.UNCHANGED, current, False)

        logger.info("Engine version has changed - clearing the approot.")
        await self.config.engine.set("version", current)
        cleared = await self._clear_app_root()
        return GateResult(GateAction.UPGRADED, current, cleared)

    async def _clear_app_root(self) -> bool:
        try:
            output = await self.config.clear_app_root()
        except Exception as e:
            logger.error(f"Could not clear the approot: {e}")
            return False
        logger.debug(output)
        return True
