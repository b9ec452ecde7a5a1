"""Tests for category id assignment."""

import json
import multiprocessing
from pathlib import Path
from unittest.mock import patch

import pytest

from appid.allocator import IdAllocator, advance_id
from appid.config import StoreConfig
from appid.errors import CorruptRegistry, LockTimeout, StorageIOFailure
from appid.lock import InProcessLock, LockCoordinator, MarkerFileLock
from appid.registry_store import RegistryStore
from appid.types import Request


# Worker functions must be top-level for multiprocessing spawn compatibility


def _worker_assign(store_dir: str, title: str, description: str) -> str:
    from appid.allocator import IdAllocator
    from appid.config import StoreConfig
    config = StoreConfig(path=Path(store_dir))
    config.lock.timeout = 60.0
    config.lock.poll_interval = 0.01
    return IdAllocator.from_config(config).assign(Request(title, description))


class TestAdvanceId:

    def test_keeps_padding(self):
        assert advance_id("001") == "002"
        assert advance_id("009") == "010"
        assert advance_id("0099", 1) == "0100"

    def test_increment(self):
        assert advance_id("010", 10) == "020"

    def test_grows_past_width(self):
        assert advance_id("999") == "1000"


class TestAssign:

    def test_scenario_shared_keyword_reuses_id(self, allocator):
        assert allocator.assign({"title": "時間管理ツール", "description": "タイマー"}) == "001"
        assert allocator.assign({"title": "ポモドーロタイマー", "description": "25分集中"}) == "001"
        assert allocator.assign({"title": "家計簿アプリ", "description": "収支管理"}) == "002"

        stats = allocator.stats()
        assert stats["total_types"] == 2
        assert stats["next_id"] == "003"

    def test_match_is_order_independent(self, tmp_path):
        requests = [
            Request("Pomodoro timer", "focus"),
            Request("Kitchen timer", "eggs"),
        ]
        for order in (requests, list(reversed(requests))):
            store_dir = tmp_path / order[0].title.replace(" ", "_")
            allocator = IdAllocator.from_config(StoreConfig(path=store_dir))
            ids = {allocator.assign(r) for r in order}
            assert ids == {"001"}

    def test_unrelated_requests_get_increasing_ids(self, allocator):
        ids = [
            allocator.assign(Request("alpha", "")),
            allocator.assign(Request("bravo", "")),
            allocator.assign(Request("charlie", "")),
        ]
        assert ids == ["001", "002", "003"]
        assert allocator.stats()["next_id"] == "004"

    def test_existing_ids_never_change(self, allocator):
        first = allocator.assign(Request("weather dashboard", "forecast"))
        for _ in range(3):
            allocator.assign(Request("another weather thing", ""))
        entry = next(iter(allocator.list_categories().values()))
        assert entry.id == first
        assert entry.display_name == "weather dashboard"

    def test_new_entry_contents(self, allocator):
        allocator.assign(Request("Calculator Pro", "Scientific calculator"))
        categories = allocator.list_categories()
        assert list(categories) == ["calculator-pro"]
        entry = categories["calculator-pro"]
        assert entry.keywords == ["calculator", "pro", "scientific"]
        assert len(entry.created_date) == 10

    def test_requirements_used_when_no_description(self, allocator):
        allocator.assign(Request("budget", "", requirements=["expense tracking"]))
        assert allocator.assign(Request("something", "tracking sheet")) == "001"

    def test_empty_key_uses_id(self, allocator):
        allocator.assign(Request("Todo!", ""))
        allocator.assign(Request("todo?", "x"))  # keyword match, no new entry
        allocator.assign(Request("!!!", ""))
        allocator.assign(Request("???", ""))
        keys = list(allocator.list_categories())
        assert keys == ["todo", "category-002", "category-003"]

    def test_same_key_different_category(self, store_config):
        store_config.allocation.key_length = 4
        allocator = IdAllocator.from_config(store_config)
        assert allocator.assign(Request("abcd one", "")) == "001"
        assert allocator.assign(Request("abcd two", "")) == "001"  # shares "abcd"
        store_config.allocation.key_length = 2
        allocator = IdAllocator.from_config(store_config)
        assert allocator.assign(Request("xy", "")) == "002"
        assert allocator.assign(Request("xy-z", "")) == "002"
        assert allocator.assign(Request("x.yq", "")) == "003"
        assert list(allocator.list_categories()) == ["abcd", "xy", "xy-2"]

    def test_match_refreshes_last_updated(self, allocator, store_config):
        allocator.assign(Request("alpha timer", ""))
        data = json.loads(store_config.registry_path.read_text(encoding="utf-8"))
        data["lastUpdated"] = "2020-01-01T00:00:00.000Z"
        store_config.registry_path.write_text(json.dumps(data), encoding="utf-8")

        assert allocator.assign(Request("alpha clock", "")) == "001"
        data = json.loads(store_config.registry_path.read_text(encoding="utf-8"))
        assert data["lastUpdated"] != "2020-01-01T00:00:00.000Z"
        assert data["nextId"] == "002"
        assert len(data["categories"]) == 1

    def test_lock_released_after_assign(self, allocator, store_config):
        allocator.assign(Request("alpha", ""))
        assert not store_config.lock_path.exists()

    def test_registry_created_on_first_assign(self, allocator, store_config):
        assert not store_config.registry_path.exists()
        allocator.assign(Request("alpha", ""))
        data = json.loads(store_config.registry_path.read_text(encoding="utf-8"))
        assert data["nextId"] == "002"


class TestFailures:

    def test_zero_increment_rejected(self, store_config):
        store_config.allocation.increment = 0
        with pytest.raises(ValueError, match="increment"):
            IdAllocator.from_config(store_config)
        assert not store_config.registry_path.exists()

    def test_lock_timeout_propagates_without_mutation(self, allocator, store_config):
        allocator.assign(Request("alpha", ""))
        before = store_config.registry_path.read_text(encoding="utf-8")

        holder = MarkerFileLock(store_config.lock_path)
        assert holder.try_acquire()
        with pytest.raises(LockTimeout):
            allocator.assign(Request("bravo", ""))
        assert store_config.registry_path.read_text(encoding="utf-8") == before
        assert store_config.lock_path.exists()  # still the holder's
        holder.release()

    def test_corrupt_registry_propagates_and_releases_lock(self, allocator, store_config):
        store_config.registry_path.write_text("garbage")
        with pytest.raises(CorruptRegistry):
            allocator.assign(Request("alpha", ""))
        assert not store_config.lock_path.exists()
        assert store_config.registry_path.read_text() == "garbage"

    def test_save_failure_releases_lock(self, allocator, store_config):
        with patch.object(RegistryStore, "save",
                          side_effect=StorageIOFailure(store_config.registry_path, OSError("full"))):
            with pytest.raises(StorageIOFailure):
                allocator.assign(Request("alpha", ""))
        assert not store_config.lock_path.exists()
        # Nothing was persisted, so the next assignment still starts at 001
        assert allocator.assign(Request("alpha", "")) == "001"


class TestAuditLog:

    def test_decisions_are_logged(self, allocator, store_config):
        allocator.assign(Request("Pomodoro timer", ""))
        allocator.assign(Request("Egg timer", ""))
        lines = store_config.audit_log_path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert all(line.startswith("[") and "Z] " in line for line in lines)
        assert "new category registered" in lines[0]
        assert "001" in lines[0]
        assert "existing id reused" in lines[1]

    def test_failures_are_distinguishable(self, allocator, store_config):
        store_config.registry_path.write_text("garbage")
        with pytest.raises(CorruptRegistry):
            allocator.assign(Request("alpha", ""))
        log = store_config.audit_log_path.read_text(encoding="utf-8")
        assert "assignment failed" in log
        assert "CorruptRegistry" in log
        assert "new category registered" not in log


class TestConcurrency:

    def test_threads_share_one_id(self, tmp_path):
        from concurrent.futures import ThreadPoolExecutor

        allocator = IdAllocator(
            RegistryStore(tmp_path / "registry.json"),
            LockCoordinator(InProcessLock(), poll_interval=0.001, timeout=30.0),
        )
        titles = [f"shared timer {i}" for i in range(16)]
        with ThreadPoolExecutor(max_workers=8) as ex:
            ids = list(ex.map(lambda t: allocator.assign(Request(t, "")), titles))
        assert set(ids) == {"001"}
        stats = allocator.stats()
        assert stats["total_types"] == 1
        assert stats["next_id"] == "002"

    def test_processes_never_disagree(self, tmp_path):
        """Separate processes racing on an empty registry all get the same id."""
        ctx = multiprocessing.get_context("spawn")
        args = [(str(tmp_path), f"timer app {i}", "pomodoro") for i in range(6)]
        with ctx.Pool(processes=6) as pool:
            ids = pool.starmap(_worker_assign, args)

        assert set(ids) == {"001"}
        registry = RegistryStore(tmp_path / "app-type-registry.json").load()
        assert len(registry.categories) == 1
        assert registry.next_id == "002"
        assert not (tmp_path / "locks" / "app-id.lock").exists()

    def test_processes_distinct_categories(self, tmp_path):
        ctx = multiprocessing.get_context("spawn")
        titles = ["alpha", "bravo", "charlie", "delta", "echo"]
        with ctx.Pool(processes=5) as pool:
            ids = pool.starmap(_worker_assign, [(str(tmp_path), t, "") for t in titles])

        assert sorted(ids) == ["001", "002", "003", "004", "005"]
        registry = RegistryStore(tmp_path / "app-type-registry.json").load()
        assert registry.next_id == "006"
        assert {e.id for e in registry.categories.values()} == set(ids)
