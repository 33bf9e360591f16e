"""
Repository pattern for persisted settings and analysis history.

Both stores sit on a KeyValueStore. Storage failures are logged and
recovered locally (empty on read, no-op on write) so they never break an
extraction.
"""

import json
from typing import Any, List, Optional

from ai_bill_reader.logging_config import get_logger

from .kv_store import HISTORY_KEY, SETTINGS_KEY, KeyValueStore
from .models import AiProvider, AiSettings, BillRecord

log = get_logger(__name__)


def is_configured(settings: AiSettings) -> bool:
    """Whether the active provider has what it needs to attempt an extraction.

    Cloud needs an API key; local needs both an endpoint and a model name.
    """
    if settings.provider == AiProvider.CLOUD:
        return bool(settings.gemini_api_key.strip())
    if settings.provider == AiProvider.LOCAL:
        return bool(settings.ollama_url.strip()) and bool(settings.ollama_model.strip())
    return False


class SettingsStore:
    """Persisted AI provider settings.

    Stored values are merged over the defaults. A stored key that is empty
    falls back to the deployment's default key; a stored non-empty key always
    wins.
    """

    def __init__(self, store: KeyValueStore, defaults: Optional[AiSettings] = None):
        self.store = store
        self.defaults = defaults or AiSettings()

    def _read(self) -> Optional[Any]:
        try:
            raw = self.store.get(SETTINGS_KEY)
            return json.loads(raw) if raw else None
        except Exception:
            log.exception("Failed to load AI settings; using defaults")
            return None

    def load(self) -> AiSettings:
        """Return the effective settings."""
        stored = self._read()
        if not isinstance(stored, dict):
            return self.defaults

        provider = self.defaults.provider
        if "provider" in stored:
            try:
                provider = AiProvider(stored["provider"])
            except ValueError:
                log.warning(f"Ignoring unknown stored provider {stored['provider']!r}")

        def _text(key: str, default: str) -> str:
            value = stored.get(key)
            return value if isinstance(value, str) else default

        api_key = _text("geminiApiKey", self.defaults.gemini_api_key)
        if not api_key and self.defaults.gemini_api_key:
            api_key = self.defaults.gemini_api_key

        return AiSettings(
            provider=provider,
            gemini_api_key=api_key,
            ollama_url=_text("ollamaUrl", self.defaults.ollama_url),
            ollama_model=_text("ollamaModel", self.defaults.ollama_model),
        )

    def save(self, settings: AiSettings) -> None:
        try:
            self.store.set(SETTINGS_KEY, json.dumps(settings.to_dict()))
        except Exception:
            log.exception("Failed to save AI settings")

    is_configured = staticmethod(is_configured)


class HistoryStore:
    """Persisted analysis history, most recent first.

    Records are keyed by id: adding a record with an existing id replaces the
    old entry and moves it to the front. Reads and edits never reorder.
    """

    def __init__(self, store: KeyValueStore):
        self.store = store

    def list(self) -> List[BillRecord]:
        try:
            raw = self.store.get(HISTORY_KEY)
            entries = json.loads(raw) if raw else []
        except Exception:
            log.exception("Failed to load history; treating it as empty")
            return []

        if not isinstance(entries, list):
            log.error("Stored history is not a list; treating it as empty")
            return []

        records = []
        for entry in entries:
            try:
                records.append(BillRecord.from_dict(entry))
            except (KeyError, TypeError, AttributeError) as e:
                log.warning(f"Skipping unreadable history entry: {e!r}")
        return records

    def _write(self, records: List[BillRecord]) -> None:
        try:
            self.store.set(HISTORY_KEY, json.dumps([r.to_dict() for r in records]))
        except Exception:
            log.exception("Failed to save history")

    def get(self, record_id: str) -> Optional[BillRecord]:
        return next((r for r in self.list() if r.id == record_id), None)

    def add(self, record: BillRecord) -> None:
        """Insert a record at the front, dropping any entry with the same id."""
        records = [r for r in self.list() if r.id != record.id]
        records.insert(0, record)
        self._write(records)

    def update(self, record: BillRecord) -> None:
        """Replace the record with the same id, keeping its position.

        Raises:
            KeyError: If no record has that id
        """
        records = self.list()
        for i, existing in enumerate(records):
            if existing.id == record.id:
                records[i] = record
                self._write(records)
                return
        raise KeyError(record.id)

    def remove(self, record_id: str) -> None:
        """Delete a record by id; unknown ids are ignored."""
        records = self.list()
        remaining = [r for r in records if r.id != record_id]
        if len(remaining) != len(records):
            self._write(remaining)
