"""
Tests for the settings and history stores.
"""
import json

import pytest

from ai_bill_reader.storage.kv_store import HISTORY_KEY, SETTINGS_KEY, InMemoryKeyValueStore
from ai_bill_reader.storage.models import (
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_OLLAMA_URL,
    AiProvider,
    AiSettings,
    BillRecord,
    ExtractedBill,
)
from ai_bill_reader.storage.repository import HistoryStore, SettingsStore, is_configured


class BrokenStore:
    def get(self, key):
        raise OSError("disk unavailable")

    def set(self, key, value):
        raise OSError("disk unavailable")


def make_record(record_id, account="A1"):
    return BillRecord(
        id=record_id,
        analyzed_at="2024-01-01T12:00:00+00:00",
        bill=ExtractedBill(account_number=account, total_current_charges=10.0),
    )


class TestIsConfigured:
    """Test the provider-dependent configuration check."""

    def test_cloud_requires_key(self):
        assert is_configured(AiSettings(provider=AiProvider.CLOUD, gemini_api_key="k")) is True
        assert is_configured(AiSettings(provider=AiProvider.CLOUD, gemini_api_key="")) is False
        assert is_configured(AiSettings(provider=AiProvider.CLOUD, gemini_api_key="   ")) is False

    def test_local_requires_url_and_model(self):
        """Test a URL alone is not enough for the local provider."""
        assert is_configured(AiSettings(provider=AiProvider.LOCAL, ollama_url="http://h:11434", ollama_model="")) is False
        assert is_configured(AiSettings(provider=AiProvider.LOCAL, ollama_url="", ollama_model="llava")) is False
        assert is_configured(AiSettings(provider=AiProvider.LOCAL, ollama_url="http://h:11434", ollama_model="llava")) is True

    def test_local_ignores_cloud_key(self):
        settings = AiSettings(provider=AiProvider.LOCAL, gemini_api_key="k", ollama_url="", ollama_model="")
        assert is_configured(settings) is False

    def test_available_on_store(self):
        assert SettingsStore.is_configured(AiSettings(gemini_api_key="k")) is True


class TestSettingsStore:
    """Test settings persistence and defaults."""

    def test_defaults_when_nothing_stored(self):
        settings = SettingsStore(InMemoryKeyValueStore()).load()
        assert settings == AiSettings()
        assert settings.provider == AiProvider.CLOUD
        assert settings.ollama_url == DEFAULT_OLLAMA_URL
        assert settings.ollama_model == DEFAULT_OLLAMA_MODEL

    def test_save_and_load(self):
        kv = InMemoryKeyValueStore()
        saved = AiSettings(provider=AiProvider.LOCAL, gemini_api_key="k", ollama_url="http://box:11434", ollama_model="moondream")
        SettingsStore(kv).save(saved)

        assert SettingsStore(kv).load() == saved
        assert json.loads(kv.get(SETTINGS_KEY))["provider"] == "local"

    def test_default_key_fills_empty_stored_key(self):
        """Test the deployment key is used when the stored key is empty."""
        kv = InMemoryKeyValueStore()
        store = SettingsStore(kv, defaults=AiSettings(gemini_api_key="build-key"))
        store.save(AiSettings(gemini_api_key=""))

        assert store.load().gemini_api_key == "build-key"

    def test_stored_key_wins_over_default(self):
        kv = InMemoryKeyValueStore()
        store = SettingsStore(kv, defaults=AiSettings(gemini_api_key="build-key"))
        store.save(AiSettings(gemini_api_key="user-key"))

        assert store.load().gemini_api_key == "user-key"

    def test_partial_stored_settings_merge_with_defaults(self):
        kv = InMemoryKeyValueStore({SETTINGS_KEY: json.dumps({"ollamaModel": "bakllava"})})
        settings = SettingsStore(kv).load()
        assert settings.ollama_model == "bakllava"
        assert settings.ollama_url == DEFAULT_OLLAMA_URL
        assert settings.provider == AiProvider.CLOUD

    def test_unknown_stored_provider_falls_back(self):
        kv = InMemoryKeyValueStore({SETTINGS_KEY: json.dumps({"provider": "gemini"})})
        assert SettingsStore(kv).load().provider == AiProvider.CLOUD

    def test_corrupted_settings_use_defaults(self):
        kv = InMemoryKeyValueStore({SETTINGS_KEY: "{{{"})
        defaults = AiSettings(gemini_api_key="build-key")
        assert SettingsStore(kv, defaults=defaults).load() == defaults

    def test_storage_errors_are_swallowed(self):
        store = SettingsStore(BrokenStore())
        store.save(AiSettings(gemini_api_key="k"))
        assert store.load() == AiSettings()


class TestHistoryStore:
    """Test history ordering and deduplication."""

    def test_empty(self):
        assert HistoryStore(InMemoryKeyValueStore()).list() == []

    def test_newest_first(self):
        history = HistoryStore(InMemoryKeyValueStore())
        history.add(make_record("a"))
        history.add(make_record("b"))
        history.add(make_record("c"))
        assert [r.id for r in history.list()] == ["c", "b", "a"]

    def test_add_same_id_twice_keeps_one_entry_first(self):
        """Test add is an upsert keyed by id."""
        history = HistoryStore(InMemoryKeyValueStore())
        history.add(make_record("a"))
        history.add(make_record("dup", account="old"))
        history.add(make_record("b"))
        history.add(make_record("dup", account="new"))

        records = history.list()
        assert [r.id for r in records] == ["dup", "b", "a"]
        assert records[0].bill.account_number == "new"

    def test_remove(self):
        history = HistoryStore(InMemoryKeyValueStore())
        history.add(make_record("a"))
        history.add(make_record("b"))
        history.remove("a")
        assert [r.id for r in history.list()] == ["b"]

    def test_remove_absent_id_is_noop(self):
        history = HistoryStore(InMemoryKeyValueStore())
        history.add(make_record("a"))
        before = history.list()
        history.remove("missing")
        assert history.list() == before

    def test_get(self):
        history = HistoryStore(InMemoryKeyValueStore())
        history.add(make_record("a"))
        assert history.get("a").id == "a"
        assert history.get("missing") is None

    def test_update_keeps_position(self):
        """Test edits do not reorder the history."""
        history = HistoryStore(InMemoryKeyValueStore())
        for record_id in ("a", "b", "c"):
            history.add(make_record(record_id))

        edited = history.get("b").with_edits(account_name="Edited")
        history.update(edited)

        records = history.list()
        assert [r.id for r in records] == ["c", "b", "a"]
        assert records[1].bill.account_name == "Edited"

    def test_update_missing_record(self):
        with pytest.raises(KeyError):
            HistoryStore(InMemoryKeyValueStore()).update(make_record("missing"))

    def test_persisted_as_json_list(self):
        kv = InMemoryKeyValueStore()
        HistoryStore(kv).add(make_record("a"))
        stored = json.loads(kv.get(HISTORY_KEY))
        assert stored[0]["id"] == "a"
        assert stored[0]["accountNumber"] == "A1"

    def test_corrupted_history_is_empty(self):
        kv = InMemoryKeyValueStore({HISTORY_KEY: "not json"})
        assert HistoryStore(kv).list() == []

    def test_non_list_history_is_empty(self):
        kv = InMemoryKeyValueStore({HISTORY_KEY: json.dumps({"id": "a"})})
        assert HistoryStore(kv).list() == []

    def test_unreadable_entries_are_skipped(self):
        good = make_record("a").to_dict()
        kv = InMemoryKeyValueStore({HISTORY_KEY: json.dumps([{"id": "broken"}, good, "junk"])})
        assert [r.id for r in HistoryStore(kv).list()] == ["a"]

    def test_storage_errors_are_swallowed(self):
        history = HistoryStore(BrokenStore())
        history.add(make_record("a"))
        history.remove("a")
        assert history.list() == []
