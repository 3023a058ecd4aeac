"""Shared fixtures: settings and config rooted in a temp directory."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from fabengine.config import Settings
from fabengine.engine.config_store import EngineConfig
from fabengine.engine.services import Services


@pytest.fixture(autouse=True)
def no_git_hash():
    """Builds under test are identified by version.json only."""
    with patch("fabengine.engine.version._get_git_hash", return_value=""):
        yield


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temporary directory, release build 1.2.3."""
    version_file = tmp_path / "version.json"
    version_file.write_text(json.dumps({"number": "1.2.3"}))
    return Settings(
        data_dir=tmp_path / "data",
        version_file=version_file,
        profile_default_file=tmp_path / "site" / ".default",
        repo_dir=tmp_path,
    )


@pytest.fixture
def engine_config(settings):
    return EngineConfig(settings.data_dir)


@pytest.fixture
def services(engine_config):
    return Services(config=engine_config)
