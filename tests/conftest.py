import copy
import json
import os
import tempfile

# Keep the module-level app from writing next to the package.
os.environ.setdefault("SOILSYNC_DB_PATH", os.path.join(tempfile.mkdtemp(prefix="soilsync-"), "data.db"))

import httpx
import pytest
from fastapi.testclient import TestClient

from soilsync.config import Settings
from soilsync.main import create_app
from soilsync.services.analysis import SoilAnalysisClient
from soilsync.services.demo_data import BASELINE
from soilsync.storage import MemoryHistoryStore, SessionStore

from .helpers import gemini_body, mock_http


@pytest.fixture
def model_payload():
    """A well-formed model reply, as a dict."""
    return copy.deepcopy(BASELINE)


@pytest.fixture
def demo_settings():
    return Settings(api_keys=[], demo_delay=0)


@pytest.fixture
def live_settings():
    return Settings(api_keys=["key-one", "key-two"], demo_delay=0)


@pytest.fixture
def history_store():
    return MemoryHistoryStore()


@pytest.fixture
def session_store():
    return SessionStore()


@pytest.fixture
def make_client(session_store, history_store):
    """Build a TestClient around an app with the given settings/analysis client."""

    def _make(settings, analysis_client=None):
        app = create_app(
            settings=settings,
            client=analysis_client,
            session_store=session_store,
            history_store=history_store,
        )
        return TestClient(app)

    return _make


@pytest.fixture
def live_client(make_client, live_settings, model_payload):
    """API client whose vision provider answers with a fenced JSON reply."""

    def handler(request):
        return httpx.Response(200, json=gemini_body("```json\n" + json.dumps(model_payload) + "\n```"))

    analysis = SoilAnalysisClient(live_settings, http_client=mock_http(handler))
    return make_client(live_settings, analysis)
