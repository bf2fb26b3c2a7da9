import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

import main
from activity_history import ActivityHistory
from material_backend import MaterialBackend, get_mock_data


def completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def ai_profile():
    profile = get_mock_data("AI-GENERATED")
    profile["materialName"] = "Conveyor Belt 1200mm"
    profile["materialType"] = "Belt"
    profile["criticality"] = "A"
    return profile


@pytest.fixture
def fake_openai(ai_profile):
    client = MagicMock()
    client.chat.completions.create.return_value = completion(json.dumps(ai_profile))
    return client


@pytest.fixture
def demo_backend():
    return MaterialBackend(client=None)


@pytest.fixture
def live_backend(fake_openai):
    return MaterialBackend(client=fake_openai, model="test-model", bulk_limit=5, bulk_workers=2)


@pytest.fixture
def app_client(monkeypatch, tmp_path, demo_backend):
    monkeypatch.setattr(main, "backend", demo_backend)
    monkeypatch.setattr(main, "history", ActivityHistory(limit=10))
    monkeypatch.setattr(main, "CHART_DIR", str(tmp_path / "charts"))
    main.app.config["TESTING"] = True
    with main.app.test_client() as client:
        yield client
