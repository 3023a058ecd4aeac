"""Shared fixtures for server integration tests."""

import json
from base64 import b64encode

import itsdangerous
import pytest
from fastapi.testclient import TestClient

from fabengine.engine.secret import generate_secret
from fabengine.engine.services import Services
from fabengine.engine.state import EngineState, VersionInfo
from fabengine.server import create_server

from tests.fakes import FakeDashboard, FakeUsers

CURRENT_VERSION = "ABC"


def session_cookie(secret: str, data: dict) -> str:
    """Build a signed session cookie value the way the server does."""
    signer = itsdangerous.TimestampSigner(secret)
    return signer.sign(b64encode(json.dumps(data).encode("utf-8"))).decode("utf-8")


@pytest.fixture
def engine_state():
    return EngineState(
        version=VersionInfo(number=CURRENT_VERSION, type="release"),
        auth_secret=generate_secret(),
    )


@pytest.fixture
def server_services(engine_config):
    """Config with a persisted version token, plus users and dashboard."""
    engine_file = engine_config.get_data_dir("config") / "engine.json"
    engine_file.parent.mkdir(parents=True, exist_ok=True)
    engine_file.write_text(json.dumps({"version": CURRENT_VERSION}))
    engine_config.engine.load()
    engine_config.get_data_dir("approot").mkdir(parents=True, exist_ok=True)
    return Services(config=engine_config, users=FakeUsers(), dashboard=FakeDashboard())


@pytest.fixture
def server_app(engine_state, server_services, settings, tmp_path):
    settings.upload_dir = tmp_path / "uploads"
    return create_server(engine_state, server_services, settings)


@pytest.fixture
def client(server_app):
    with TestClient(server_app, follow_redirects=False) as test_client:
        yield test_client
