import pytest

from flashcouncil.agents import Persona
from flashcouncil.server.sessions import (
    RequestError,
    SessionConfig,
    default_config,
    validate_session_request,
)
from flashcouncil.server.settings import DEFAULTS, SettingsStore, validate_setting


def test_get_returns_default_when_empty(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    assert store.get("session.rounds") == 6
    assert store.get("llm.model") == "gpt-4o-mini"


def test_set_and_get(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    store.set("session.rounds", 10)
    assert store.get("session.rounds") == 10


def test_values_survive_reopen(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    store.set("session.enabled_personas", ["critic", "explainer"])
    store.close()
    reopened = SettingsStore(tmp_path / "test.db")
    assert reopened.get("session.enabled_personas") == ["critic", "explainer"]


def test_delete_reverts_to_default(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    store.set("session.rounds", 10)
    store.delete("session.rounds")
    assert store.get("session.rounds") == 6


def test_get_all_returns_defaults_merged(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    store.set("llm.model", "gpt-4o")
    all_settings = store.get_all()
    assert all_settings["llm.model"] == "gpt-4o"
    assert all_settings["session.max_handoffs"] == 2
    assert set(all_settings) == set(DEFAULTS)


def test_set_many(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    store.set_many({"session.rounds": 3, "llm.temperature": 0.2})
    assert store.get("session.rounds") == 3
    assert store.get("llm.temperature") == 0.2


def test_set_many_is_all_or_nothing(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    with pytest.raises(ValueError):
        store.set_many({"session.rounds": 3, "session.max_handoffs": 99})
    assert store.get("session.rounds") == 6


@pytest.mark.parametrize("key,value", [
    ("session.rounds", 0),
    ("session.rounds", 21),
    ("session.rounds", True),
    ("session.max_handoffs", 6),
    ("session.enabled_personas", []),
    ("session.enabled_personas", ["moderator"]),
    ("session.enabled_personas", ["critic", "critic"]),
    ("session.include_transcript", "yes"),
    ("llm.base_url", "ftp://example.com"),
    ("llm.temperature", 3),
    ("llm.api_key_env", "  "),
])
def test_set_rejects_invalid_values(tmp_path, key, value):
    store = SettingsStore(tmp_path / "test.db")
    with pytest.raises(ValueError, match="Invalid value"):
        store.set(key, value)


def test_validate_setting_unknown_key():
    assert validate_setting("nonexistent.key", 1) == "Unknown settings key: nonexistent.key"
    assert validate_setting("session.rounds", 4) is None


def test_get_effective_with_cli_overrides(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    store.set("llm.model", "gpt-4o")
    effective = store.get_effective({"llm.model": "local-llama", "llm.base_url": None})
    assert effective["llm.model"] == "local-llama"  # CLI wins
    assert effective["llm.base_url"] == DEFAULTS["llm.base_url"]


def test_unknown_key_returns_none(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    assert store.get("nonexistent.key") is None


def test_custom_default(tmp_path):
    store = SettingsStore(tmp_path / "test.db")
    assert store.get("nonexistent.key", default="fallback") == "fallback"


# ---------------------------------------------------------------------------
# Session request validation
# ---------------------------------------------------------------------------


def test_default_config_from_settings():
    config = default_config(dict(DEFAULTS, **{"session.rounds": 4}))
    assert config.rounds == 4
    assert config.personas == (Persona.MEMORY_EXPERT, Persona.SUBJECT_EXPERT, Persona.CRITIC)
    assert default_config() == SessionConfig()


def test_validate_request_with_defaults():
    topic, config = validate_session_request({"topic": "  Binary Search Trees  "}, DEFAULTS)
    assert topic == "Binary Search Trees"
    assert config == SessionConfig()


def test_validate_request_full_config():
    topic, config = validate_session_request({
        "topic": "Photosynthesis",
        "config": {
            "roundCount": 3,
            "maxHandoffsPerRound": 1,
            "enabledPersonas": ["explainer", "critic"],
            "includeTranscriptInPrompts": False,
        },
    })
    assert config.rounds == 3
    assert config.max_handoffs == 1
    assert config.personas == (Persona.EXPLAINER, Persona.CRITIC)
    assert config.include_transcript is False
    assert config.to_dict()["enabledPersonas"] == ["explainer", "critic"]


def test_legacy_rounds_field_is_honoured():
    _, config = validate_session_request({"topic": "Photosynthesis", "rounds": 2})
    assert config.rounds == 2


@pytest.mark.parametrize("body,message", [
    ({}, "Topic is required"),
    ({"topic": "   "}, "Topic is required"),
    ({"topic": 42}, "Topic is required"),
    ({"topic": "x" * 501}, "at most 500"),
    ({"topic": "t", "config": ["roundCount"]}, "'config' must be an object"),
    ({"topic": "t", "config": {"bogus": 1}}, "Unknown config keys"),
    ({"topic": "t", "config": {"roundCount": 0}}, "between 1 and 20"),
    ({"topic": "t", "config": {"roundCount": "5"}}, "must be an integer"),
    ({"topic": "t", "config": {"maxHandoffsPerRound": 6}}, "between 1 and 5"),
    ({"topic": "t", "config": {"enabledPersonas": []}}, "non-empty array"),
    ({"topic": "t", "config": {"enabledPersonas": ["wizard"]}}, "Unknown persona"),
    ({"topic": "t", "config": {"enabledPersonas": ["moderator"]}}, "moderator"),
    ({"topic": "t", "config": {"enabledPersonas": ["critic", "critic"]}}, "duplicate"),
    ({"topic": "t", "config": {"includeTranscriptInPrompts": 1}}, "must be a boolean"),
])
def test_validate_request_rejects(body, message):
    with pytest.raises(RequestError, match=message):
        validate_session_request(body)
