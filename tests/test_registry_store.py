"""Tests for registry persistence: validation, round trip, legacy layout."""

import json

import pytest

from appid.errors import CorruptRegistry
from appid.registry_store import RegistryStore, registry_to_dict
from appid.types import CategoryEntry, Registry


def _sample_registry() -> Registry:
    return Registry(
        categories={
            "時間管理ツール": CategoryEntry("001", "時間管理ツール", ["時間管理ツール", "タイマー"], "2026-10-01"),
            "calculator-pro": CategoryEntry("002", "Calculator Pro", ["calculator", "pro"], "2026-10-02"),
        },
        next_id="003",
    )


class TestLoad:

    def test_missing_file_gives_empty_registry(self, registry_store, registry_path):
        registry = registry_store.load()
        assert registry.categories == {}
        assert registry.next_id == "001"
        assert not registry_path.exists()

    def test_custom_first_id(self, registry_path):
        assert RegistryStore(registry_path, first_id="100").load().next_id == "100"

    def test_invalid_json(self, registry_store, registry_path):
        registry_path.write_text("{not json")
        with pytest.raises(CorruptRegistry, match="invalid JSON"):
            registry_store.load()

    def test_top_level_not_object(self, registry_store, registry_path):
        registry_path.write_text("[]")
        with pytest.raises(CorruptRegistry):
            registry_store.load()

    def test_missing_required_field(self, registry_store, registry_path):
        registry_path.write_text(json.dumps({
            "version": 1,
            "categories": {"x": {"id": "001", "keywords": ["x"], "createdDate": "2026-01-01"}},
            "nextId": "002",
        }))
        with pytest.raises(CorruptRegistry):
            registry_store.load()

    def test_wrong_types_are_not_coerced(self, registry_store, registry_path):
        registry_path.write_text(json.dumps({
            "version": 1,
            "categories": {"x": {"id": 1, "displayName": "x", "keywords": ["x"], "createdDate": ""}},
            "nextId": "002",
        }))
        with pytest.raises(CorruptRegistry):
            registry_store.load()

    def test_newer_version_rejected(self, registry_store, registry_path):
        registry_path.write_text(json.dumps({"version": 99, "categories": {}, "nextId": "001"}))
        with pytest.raises(CorruptRegistry, match="unsupported version"):
            registry_store.load()

    def test_duplicate_ids_rejected(self, registry_store, registry_path):
        registry_path.write_text(json.dumps({
            "version": 1,
            "categories": {
                "a": {"id": "001", "displayName": "a", "keywords": ["a1"], "createdDate": ""},
                "b": {"id": "001", "displayName": "b", "keywords": ["b1"], "createdDate": ""},
            },
            "nextId": "002",
        }))
        with pytest.raises(CorruptRegistry, match="duplicate id"):
            registry_store.load()

    def test_next_id_must_exceed_assigned(self, registry_store, registry_path):
        registry_path.write_text(json.dumps({
            "version": 1,
            "categories": {"a": {"id": "005", "displayName": "a", "keywords": [], "createdDate": ""}},
            "nextId": "003",
        }))
        with pytest.raises(CorruptRegistry, match="does not exceed"):
            registry_store.load()

    def test_legacy_layout(self, registry_store, registry_path):
        registry_path.write_text(json.dumps({
            "registry": {
                "格好良い電卓": {
                    "id": "001",
                    "name": "格好良い電卓",
                    "keywords": ["格好良い電卓", "Calculator"],
                    "created_date": "2025-07-01",
                },
            },
            "next_available_id": "002",
            "last_updated": "2025-07-01T00:00:00.000Z",
        }, ensure_ascii=False), encoding="utf-8")

        registry = registry_store.load()
        entry = registry.categories["格好良い電卓"]
        assert entry.id == "001"
        assert entry.display_name == "格好良い電卓"
        assert entry.keywords == ["格好良い電卓", "calculator"]
        assert registry.next_id == "002"

        registry_store.save(registry)
        data = json.loads(registry_path.read_text(encoding="utf-8"))
        assert data["version"] == 1
        assert data["nextId"] == "002"
        assert "registry" not in data


class TestSave:

    def test_round_trip_preserves_everything_but_timestamp(self, registry_store):
        original = _sample_registry()
        registry_store.save(original)
        first = registry_to_dict(original)

        reloaded = registry_store.load()
        registry_store.save(reloaded)
        second = registry_to_dict(registry_store.load())

        first.pop("lastUpdated")
        second.pop("lastUpdated")
        assert first == second
        assert list(reloaded.categories) == ["時間管理ツール", "calculator-pro"]

    def test_save_stamps_last_updated(self, registry_store):
        registry = _sample_registry()
        registry.last_updated = ""
        registry_store.save(registry)
        assert registry.last_updated
        assert registry_store.load().last_updated == registry.last_updated

    def test_file_format(self, registry_store, registry_path):
        registry_store.save(_sample_registry())
        data = json.loads(registry_path.read_text(encoding="utf-8"))
        assert set(data) == {"version", "categories", "nextId", "lastUpdated"}
        assert data["categories"]["calculator-pro"] == {
            "id": "002",
            "displayName": "Calculator Pro",
            "keywords": ["calculator", "pro"],
            "createdDate": "2026-10-02",
        }
        # Non-ASCII text is stored readable
        assert "時間管理ツール" in registry_path.read_text(encoding="utf-8")

    def test_no_temp_files_left_behind(self, registry_store, registry_path):
        registry_store.save(_sample_registry())
        registry_store.save(_sample_registry())
        assert [p.name for p in registry_path.parent.iterdir()] == [registry_path.name]

    def test_failed_write_keeps_previous_file(self, registry_store, registry_path, monkeypatch):
        registry_store.save(_sample_registry())
        before = registry_path.read_text(encoding="utf-8")

        def failing_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("appid.storage.os.replace", failing_replace)
        from appid.errors import StorageIOFailure
        with pytest.raises(StorageIOFailure):
            registry_store.save(Registry(categories={}, next_id="001"))

        assert registry_path.read_text(encoding="utf-8") == before
        assert [p.name for p in registry_path.parent.iterdir()] == [registry_path.name]
