from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Must be set before anything imports config.settings (the Settings object is cached).
os.environ["BASE_URL"] = "https://example.test"
os.environ["DEEPGRAM_API_KEY"] = "test-deepgram-key"
os.environ["ELEVENLABS_API_KEY"] = "test-elevenlabs-key"
os.environ["LLM_API_KEY"] = "test-llm-key"
os.environ["LLM_ENDPOINT"] = "https://llm.example.test"
for _name in ("BASE_WS_URL", "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER"):
    os.environ.pop(_name, None)


@pytest.fixture(scope="session")
def app():
    import importlib

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
