from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ..agents import SELECTABLE_PERSONAS

_DEFAULT_DB_PATH = Path.home() / ".flashcouncil" / "flashcouncil.db"

DEFAULTS: dict[str, Any] = {
    "session.rounds": 6,
    "session.max_handoffs": 2,
    "session.enabled_personas": ["memory_expert", "subject_expert", "critic"],
    "session.include_transcript": True,
    "llm.base_url": "https://api.openai.com",
    "llm.model": "gpt-4o-mini",
    "llm.temperature": 0.8,
    "llm.max_tokens": 2000,
    "llm.timeout": 120,
    # Name of the environment variable holding the API key; the key itself is never stored.
    "llm.api_key_env": "OPENAI_API_KEY",
}


def _is_int_between(low: int, high: int) -> Callable[[Any], bool]:
    return lambda v: isinstance(v, int) and not isinstance(v, bool) and low <= v <= high


def _is_persona_list(value: Any) -> bool:
    if not isinstance(value, list) or not value:
        return False
    valid = {p.value for p in SELECTABLE_PERSONAS}
    return all(isinstance(v, str) and v in valid for v in value) and len(set(value)) == len(value)


_VALIDATORS: dict[str, Callable[[Any], bool]] = {
    "session.rounds": _is_int_between(1, 20),
    "session.max_handoffs": _is_int_between(1, 5),
    "session.enabled_personas": _is_persona_list,
    "session.include_transcript": lambda v: isinstance(v, bool),
    "llm.base_url": lambda v: isinstance(v, str) and v.startswith(("http://", "https://")),
    "llm.model": lambda v: isinstance(v, str) and bool(v.strip()),
    "llm.temperature": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool) and 0 <= v <= 2,
    "llm.max_tokens": _is_int_between(1, 32000),
    "llm.timeout": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool) and v > 0,
    "llm.api_key_env": lambda v: isinstance(v, str) and bool(v.strip()),
}


def validate_setting(key: str, value: Any) -> str | None:
    """Return an error message for an unknown key or a bad value, else None."""
    if key not in DEFAULTS:
        return f"Unknown settings key: {key}"
    if not _VALIDATORS[key](value):
        return f"Invalid value for {key}: {value!r}"
    return None


_SCHEMA = """
CREATE TABLE IF NOT EXISTS settings (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class SettingsStore:
    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or _DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    def get(self, key: str, default: Any = ...) -> Any:
        with self._lock:
            cur = self._conn.execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            )
            row = cur.fetchone()
        if row is not None:
            return json.loads(row[0])
        if default is not ...:
            return default
        return DEFAULTS.get(key)

    def set(self, key: str, value: Any) -> None:
        error = validate_setting(key, value)
        if error:
            raise ValueError(error)
        encoded = json.dumps(value)
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, encoded),
            )
            self._conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            self._conn.commit()

    def get_all(self) -> dict[str, Any]:
        with self._lock:
            cur = self._conn.execute("SELECT key, value FROM settings")
            rows = {row[0]: json.loads(row[1]) for row in cur.fetchall()}
        result = dict(DEFAULTS)
        result.update(rows)
        return result

    def set_many(self, updates: dict[str, Any]) -> None:
        errors = [e for e in (validate_setting(k, v) for k, v in updates.items()) if e]
        if errors:
            raise ValueError("; ".join(errors))
        with self._lock:
            for key, value in updates.items():
                self._conn.execute(
                    "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                    (key, json.dumps(value)),
                )
            self._conn.commit()

    def get_effective(self, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """Stored settings with CLI overrides (None values ignored) on top."""
        result = self.get_all()
        if overrides:
            result.update({k: v for k, v in overrides.items() if v is not None})
        return result

    def close(self) -> None:
        with self._lock:
            self._conn.close()
