import pytest


@pytest.fixture(autouse=True)
def _no_real_api_key(monkeypatch):
    """Keep tests from picking up a developer's real provider key."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    yield
