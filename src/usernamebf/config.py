"""Cấu hình cache đọc từ biến môi trường (.env nếu có)."""
from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ----------------------
# Durable store (Redis)
# ----------------------

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

REDIS_TIMEOUT_SECONDS = float(os.getenv("REDIS_TIMEOUT_SECONDS", "2"))

CACHE_BACKEND = os.getenv("CACHE_BACKEND", "redis")  # "redis" | "memory"

# ----------------------
# Bloom filter
# ----------------------

BLOOM_CAPACITY = int(os.getenv("BLOOM_CAPACITY", "10000"))

BLOOM_ERROR_RATE = float(os.getenv("BLOOM_ERROR_RATE", "0.01"))

BLOOM_REDIS_KEY = os.getenv("BLOOM_REDIS_KEY", "username_bloom_filter")

BLOOM_SEED_BOOTSTRAP = _env_bool("BLOOM_SEED_BOOTSTRAP", "false")  # chỉ dùng cho demo

BLOOM_VALIDATION_TOLERANCE = int(os.getenv("BLOOM_VALIDATION_TOLERANCE", "10"))

BOOTSTRAP_USERNAMES: tuple[str, ...] = (
    "admin", "user", "test", "demo", "guest", "root", "john", "jane",
    "alice", "bob", "charlie", "david", "emma", "frank", "grace",
    "henry", "ivy", "jack", "kate", "liam", "mia", "noah", "olivia",
    "peter", "quinn", "ruby", "sam", "tina", "uma", "victor", "wendy",
)


@dataclass(frozen=True)
class CacheSettings:
    capacity: int = BLOOM_CAPACITY
    error_rate: float = BLOOM_ERROR_RATE
    redis_key: str = BLOOM_REDIS_KEY
    redis_url: str = REDIS_URL
    redis_timeout_seconds: float = REDIS_TIMEOUT_SECONDS
    backend: str = CACHE_BACKEND
    seed_bootstrap: bool = BLOOM_SEED_BOOTSTRAP
    validation_tolerance: int = BLOOM_VALIDATION_TOLERANCE
    bootstrap_usernames: tuple[str, ...] = BOOTSTRAP_USERNAMES

    @classmethod
    def from_env(cls) -> "CacheSettings":
        """Đọc lại biến môi trường tại thời điểm gọi (không dùng giá trị lúc import)."""
        return cls(
            capacity=int(os.getenv("BLOOM_CAPACITY", "10000")),
            error_rate=float(os.getenv("BLOOM_ERROR_RATE", "0.01")),
            redis_key=os.getenv("BLOOM_REDIS_KEY", "username_bloom_filter"),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            redis_timeout_seconds=float(os.getenv("REDIS_TIMEOUT_SECONDS", "2")),
            backend=os.getenv("CACHE_BACKEND", "redis"),
            seed_bootstrap=_env_bool("BLOOM_SEED_BOOTSTRAP", "false"),
            validation_tolerance=int(os.getenv("BLOOM_VALIDATION_TOLERANCE", "10")),
        )
