# -*- coding: utf-8 -*-
"""
Fixture dùng chung cho test cache username.
"""

import pytest
import redis

from usernamebf.config import CacheSettings
from usernamebf.manager.cache_manager import CacheManager
from usernamebf.manager.username_service import UsernameService
from usernamebf.store.membership_store import InMemoryMembershipStore
from usernamebf.store.redis_store import RedisMembershipStore
from usernamebf.users.user_store import InMemoryUserStore


class FakeRedis:
    """Client Redis giả trong bộ nhớ, chỉ đủ các lệnh store dùng; có thể tiêm lỗi."""

    def __init__(self):
        self.strings = {}
        self.sets = {}
        self.failing = set()  # tên lệnh sẽ ném ConnectionError
        self.timing_out = set()  # tên lệnh sẽ ném TimeoutError
        self.undeletable = set()  # khóa DEL bỏ qua (mô phỏng xóa một phần)

    def _check(self, op):
        if op in self.failing:
            raise redis.exceptions.ConnectionError(f"{op}: connection refused")
        if op in self.timing_out:
            raise redis.exceptions.TimeoutError(f"{op}: timed out")

    def set(self, key, value):
        self._check("set")
        self.strings[key] = value
        return True

    def get(self, key):
        self._check("get")
        return self.strings.get(key)

    def sadd(self, key, *members):
        self._check("sadd")
        s = self.sets.setdefault(key, set())
        before = len(s)
        s.update(members)
        return len(s) - before

    def srem(self, key, *members):
        self._check("srem")
        s = self.sets.get(key, set())
        removed = sum(1 for m in members if m in s)
        s.difference_update(members)
        if not s:
            self.sets.pop(key, None)
        return removed

    def sscan_iter(self, key, count=None):
        self._check("sscan_iter")
        return iter(list(self.sets.get(key, set())))

    def scard(self, key):
        self._check("scard")
        return len(self.sets.get(key, set()))

    def exists(self, *keys):
        self._check("exists")
        return sum(1 for k in keys if k in self.strings or self.sets.get(k))

    def delete(self, *keys):
        self._check("delete")
        removed = 0
        for k in keys:
            if k in self.undeletable:
                continue
            if self.strings.pop(k, None) is not None:
                removed += 1
            if self.sets.pop(k, None) is not None:
                removed += 1
        return removed

    def ping(self):
        self._check("ping")
        return True


@pytest.fixture
def settings():
    return CacheSettings(capacity=10_000, error_rate=0.01, backend="memory", seed_bootstrap=False)


@pytest.fixture
def memory_store():
    return InMemoryMembershipStore()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_store(fake_redis):
    return RedisMembershipStore(fake_redis, key="test_bloom")


@pytest.fixture
def manager(memory_store, settings):
    m = CacheManager(memory_store, settings=settings)
    m.initialize()
    return m


@pytest.fixture
def redis_manager(redis_store, settings):
    m = CacheManager(redis_store, settings=settings)
    m.initialize()
    return m


@pytest.fixture
def users():
    return InMemoryUserStore()


@pytest.fixture
def service(manager, users):
    return UsernameService(manager, users)
