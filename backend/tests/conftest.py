"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from reportgen.config import ReportConfig, set_config
from reportgen.generation.service import set_provider
from reportgen.jobs.space_client import set_space_client
from reportgen.jobs.tracker import set_tracker
from reportgen.main import app

from fakes import FakeProvider


@pytest.fixture
def upload_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir()
    return path


@pytest.fixture
def test_config(tmp_path, upload_dir):
    """Install a config pointing every directory into tmp_path."""
    config = ReportConfig()
    config.uploads.temp_dir = str(upload_dir)
    config.jobs.store = "memory"
    config.jobs.jobs_dir = str(tmp_path / "jobs")
    config.jobs.db_path = str(tmp_path / "jobs.duckdb")
    config.remote.base_url = "https://space.test/run/predict"
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def fake_provider(test_config):
    provider = FakeProvider()
    set_provider(provider)
    yield provider
    set_provider(None)


@pytest.fixture
def api_client(test_config):
    """Provide a TestClient for the main FastAPI app.

    Used without a ``with`` block, so the lifespan does not run and the
    globals installed by the other fixtures are left alone.
    """
    yield TestClient(app)
    set_tracker(None)
    set_space_client(None)
