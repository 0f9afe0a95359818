# -*- coding: utf-8 -*-
"""
Test vòng đời CacheManager: initialize / add / rebuild / refresh / clear / validate.
"""

import random
import string
import threading

import pytest

from usernamebf.config import BOOTSTRAP_USERNAMES, CacheSettings
from usernamebf.errors import (
    AlreadyInitialized,
    CacheNotInitialized,
    InconsistentCache,
    InvalidInput,
    StoreUnavailable,
)
from usernamebf.manager.cache_manager import CacheManager, CacheState
from usernamebf.store.membership_store import CacheMetadata, InMemoryMembershipStore


def random_str(rng: random.Random, n: int = 8) -> str:
    return ''.join(rng.choices(string.ascii_lowercase, k=n))


class FlakyStore(InMemoryMembershipStore):
    """Store memory có thể giả lập mất kết nối khi ghi phần tử."""

    def __init__(self):
        super().__init__()
        self.down = False

    def record_element(self, name):
        if self.down:
            raise StoreUnavailable("store down")
        return super().record_element(name)


def test_starts_uninitialized(memory_store, settings):
    m = CacheManager(memory_store, settings=settings)
    assert m.state is CacheState.UNINITIALIZED
    with pytest.raises(CacheNotInitialized):
        m.might_exist("alice")
    with pytest.raises(CacheNotInitialized):
        m.add("alice")
    with pytest.raises(CacheNotInitialized):
        m.rebuild()


def test_initialize_empty_store_writes_metadata(manager, memory_store):
    assert manager.state is CacheState.READY
    assert memory_store.load_metadata() == CacheMetadata(10_000, 0.01)
    assert memory_store.element_count() == 0
    assert manager.stats().estimated_element_count == 0


def test_initialize_twice_is_noop_unless_strict(manager):
    manager.add("alice")
    manager.initialize()
    assert manager.might_exist("alice")
    with pytest.raises(AlreadyInitialized):
        manager.initialize(strict=True)


def test_initialize_seeds_bootstrap_when_enabled(memory_store):
    settings = CacheSettings(capacity=1000, error_rate=0.01, backend="memory", seed_bootstrap=True)
    m = CacheManager(memory_store, settings=settings)
    m.initialize()
    assert memory_store.element_count() == len(BOOTSTRAP_USERNAMES)
    assert all(m.might_exist(name) for name in BOOTSTRAP_USERNAMES)


def test_initialize_replays_existing_elements(memory_store, settings):
    memory_store.persist_metadata(CacheMetadata(10_000, 0.01))
    memory_store.record_elements(["alice", "bob"])
    m = CacheManager(memory_store, settings=settings)
    m.initialize()
    assert m.might_exist("alice")
    assert m.might_exist("Bob")
    assert m.stats().estimated_element_count == 2


def test_initialize_prefers_stored_metadata(memory_store, settings):
    memory_store.persist_metadata(CacheMetadata(500, 0.05))
    m = CacheManager(memory_store, settings=settings)
    m.initialize()
    stats = m.stats()
    assert stats.capacity == 500
    assert stats.target_error_rate == 0.05
    m.rebuild()
    assert m.stats().capacity == 500


def test_concrete_scenario(manager):
    stats = manager.stats()
    assert stats.bit_array_size == 95851
    assert stats.hash_count == 7

    manager.add("alice")
    assert manager.might_exist("alice") is True
    assert manager.might_exist("zzzzz-never-added") is False

    manager.clear()
    assert manager.state is CacheState.UNINITIALIZED
    assert manager.might_exist("alice") is False
    with pytest.raises(CacheNotInitialized):
        manager.add("alice")

    manager.initialize()
    assert manager.might_exist("alice") is False


def test_add_is_case_insensitive(manager):
    manager.add("Bob")
    assert manager.might_exist("bob")


def test_add_is_idempotent(manager, memory_store):
    manager.add("erin")
    before = manager.stats().estimated_element_count
    manager.add("erin")
    manager.add(" ERIN")
    assert manager.stats().estimated_element_count == before == 1
    assert memory_store.element_count() == 1


def test_add_rejects_invalid_input(manager):
    with pytest.raises(InvalidInput):
        manager.add("")
    with pytest.raises(InvalidInput):
        manager.might_exist("   ")


def test_rebuild_keeps_every_added_name(manager):
    rng = random.Random(3)
    names = [random_str(rng) for _ in range(500)]
    for name in names:
        manager.add(name)
    replayed = manager.rebuild()
    assert replayed == len(set(names))
    assert all(manager.might_exist(name) for name in names)
    assert len(manager.rebuild_events) == 1
    assert manager.metrics.rebuilds == 1


def test_refresh_resets_and_reseeds(memory_store):
    settings = CacheSettings(capacity=1000, error_rate=0.01, backend="memory", seed_bootstrap=True)
    m = CacheManager(memory_store, settings=settings)
    m.initialize()
    m.add("custom-name")
    m.refresh_cache()
    assert m.state is CacheState.READY
    assert m.might_exist("alice")
    assert not m.might_exist("custom-name")
    assert memory_store.element_count() == len(BOOTSTRAP_USERNAMES)


def test_clear_wipes_store(manager, memory_store):
    manager.add("alice")
    manager.clear()
    assert memory_store.element_count() == 0
    assert memory_store.load_metadata() is None
    assert manager.stats().estimated_element_count == 0


def test_persistence_failure_keeps_engine_add(settings):
    store = FlakyStore()
    m = CacheManager(store, settings=settings)
    m.initialize()
    store.down = True

    assert m.add("frank") is False
    assert m.might_exist("frank")
    assert m.metrics.persistence_failures == 1
    assert m.stats().persistence_failures == 1
    assert m.stats().estimated_element_count == 1
    assert store.element_count() == 0

    store.down = False
    assert m.add("frank") is True
    assert store.element_count() == 1
    assert m.stats().estimated_element_count == 1
    assert m.validate_cache().is_valid


def test_populate_from_names(manager, memory_store):
    names = [f"member{i}" for i in range(300)]
    loaded = manager.populate_from(names)
    assert loaded == 300
    assert memory_store.element_count() == 300
    assert all(manager.might_exist(n) for n in names)
    assert manager.validate_cache().is_valid


def test_validate_fresh_cache_is_valid(manager):
    report = manager.validate_cache()
    assert report.is_valid
    assert report.errors == []
    report.raise_for_status()


def test_validate_detects_drift(manager, memory_store):
    for i in range(50):
        manager.add(f"user{i}")
    assert manager.validate_cache().is_valid

    for i in range(5):
        memory_store.remove_element(f"user{i}")
    assert manager.validate_cache().is_valid  # within tolerance

    for i in range(5, 20):
        memory_store.remove_element(f"user{i}")
    report = manager.validate_cache()
    assert report.is_valid is False
    assert report.stored_count == 30
    assert report.engine_count == 50
    assert any("mismatch" in e for e in report.errors)
    with pytest.raises(InconsistentCache):
        report.raise_for_status()

    manager.rebuild(reason="drift")
    assert manager.validate_cache().is_valid


def test_validate_detects_missing_metadata(manager, memory_store):
    manager.add("alice")
    memory_store._metadata = None
    report = manager.validate_cache()
    assert not report.is_valid
    assert "Filter metadata missing but elements exist" in report.errors


def test_validate_detects_missing_elements(manager, memory_store):
    manager.add("alice")
    memory_store.remove_element("alice")
    report = manager.validate_cache()
    assert not report.is_valid
    assert "Filter metadata exists but elements missing" in report.errors


def test_validate_reports_uninitialized(memory_store, settings):
    report = CacheManager(memory_store, settings=settings).validate_cache()
    assert not report.is_valid
    assert "Cache not initialized" in report.errors


def test_validate_store_down_returns_invalid_report(redis_manager, fake_redis):
    fake_redis.failing.add("exists")
    report = redis_manager.validate_cache()
    assert report.is_valid is False
    assert report.errors[0].startswith("Cache validation error")


def test_initialize_store_down_propagates(redis_store, fake_redis, settings):
    fake_redis.failing.add("get")
    m = CacheManager(redis_store, settings=settings)
    with pytest.raises(StoreUnavailable):
        m.initialize()
    assert m.state is CacheState.UNINITIALIZED


def test_redis_backed_lifecycle(redis_manager, redis_store, settings):
    redis_manager.add("Grace")
    assert redis_store.list_elements() == ["grace"]

    restarted = CacheManager(redis_store, settings=settings)
    restarted.initialize()
    assert restarted.might_exist("grace")
    assert restarted.validate_cache().is_valid


def test_rebuild_is_published_atomically(manager):
    """Đọc song song trong lúc rebuild liên tục không bao giờ thấy âm tính giả."""
    names = [f"reader{i}" for i in range(2000)]
    for name in names:
        manager.add(name)

    misses = []
    stop = threading.Event()

    def reader():
        rng = random.Random()
        while not stop.is_set():
            name = rng.choice(names)
            if not manager.might_exist(name):
                misses.append(name)

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for _ in range(5):
        manager.rebuild(reason="stress")
    stop.set()
    for t in threads:
        t.join()

    assert misses == []


def test_invalid_settings_rejected(memory_store):
    with pytest.raises(InvalidInput):
        CacheManager(memory_store, settings=CacheSettings(capacity=0, backend="memory"))


def test_cache_filled_to_capacity_stays_valid(manager, memory_store, settings):
    """Nạp đúng capacity tên phân biệt: va chạm dương giả không được làm lệch bộ đếm."""
    rng = random.Random(7)
    names = set()
    while len(names) < settings.capacity:
        names.add(random_str(rng, 10))

    assert manager.populate_from(sorted(names)) == settings.capacity
    report = manager.validate_cache()
    assert report.is_valid, report.errors
    assert report.engine_count == report.stored_count == settings.capacity
    assert manager.stats().estimated_element_count == memory_store.element_count()

    manager.rebuild(reason="capacity")
    assert manager.validate_cache().is_valid
    assert manager.stats().estimated_element_count == settings.capacity

    restarted = CacheManager(memory_store, settings=settings)
    restarted.initialize()
    assert restarted.validate_cache().is_valid
    assert restarted.stats().estimated_element_count == settings.capacity


def test_populate_counts_distinct_names(manager):
    assert manager.populate_from(["amy", "Amy", " AMY ", "ben"]) == 2
    assert manager.stats().estimated_element_count == 2


class UnclearableStore(InMemoryMembershipStore):
    def clear(self):
        raise StoreUnavailable("store down")


def test_failed_clear_keeps_engine(settings):
    m = CacheManager(UnclearableStore(), settings=settings)
    m.initialize()
    m.add("alice")

    with pytest.raises(StoreUnavailable):
        m.clear()
    assert m.state is CacheState.READY
    assert m.might_exist("alice")
    assert m.stats().estimated_element_count == 1


def test_partial_redis_clear_keeps_engine(redis_manager, fake_redis):
    redis_manager.add("alice")
    fake_redis.undeletable.add("test_bloom:elements")

    with pytest.raises(InconsistentCache):
        redis_manager.clear()
    assert redis_manager.state is CacheState.READY
    assert redis_manager.might_exist("alice")


def test_add_is_serialized_with_rebuild(settings):
    """Rebuild chạy song song khi add đang ghi store vẫn phải thấy tên vừa thêm."""
    rebuilds = []

    class RacingStore(InMemoryMembershipStore):
        def record_element(self, name):
            if not rebuilds:
                t = threading.Thread(target=m.rebuild, kwargs={"reason": "race"})
                rebuilds.append(t)
                t.start()
                t.join(timeout=0.2)
            return super().record_element(name)

    m = CacheManager(RacingStore(), settings=settings)
    m.initialize()
    assert m.add("late") is True
    rebuilds[0].join()

    assert m.metrics.rebuilds == 1
    assert m.might_exist("late")
    assert m.validate_cache().is_valid
