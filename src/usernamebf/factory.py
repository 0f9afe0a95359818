"""Dựng các handle dùng chung một lần lúc khởi động tiến trình rồi tiêm vào nơi cần."""
from __future__ import annotations

from typing import Optional

import redis

from usernamebf.config import CacheSettings
from usernamebf.manager.cache_manager import CacheManager
from usernamebf.manager.username_service import UsernameService
from usernamebf.metrics.metrics import Metrics
from usernamebf.store.membership_store import InMemoryMembershipStore, MembershipStore
from usernamebf.store.redis_store import RedisMembershipStore, build_redis_client
from usernamebf.users.user_store import InMemoryUserStore, UserStore


def build_store(settings: CacheSettings, client: Optional[redis.Redis] = None) -> MembershipStore:
    """Chọn backend theo settings.backend ("redis" | "memory")."""
    if settings.backend == "memory":
        return InMemoryMembershipStore()
    if settings.backend != "redis":
        raise ValueError(f"unknown cache backend: {settings.backend!r}")
    return RedisMembershipStore(client or build_redis_client(settings), key=settings.redis_key)


def build_service(
    settings: Optional[CacheSettings] = None,
    users: Optional[UserStore] = None,
    client: Optional[redis.Redis] = None,
    initialize: bool = True,
) -> UsernameService:
    settings = settings or CacheSettings.from_env()
    metrics = Metrics()
    cache = CacheManager(build_store(settings, client), settings=settings, metrics=metrics)
    if initialize:
        cache.initialize()
    return UsernameService(cache, users if users is not None else InMemoryUserStore(), metrics)
