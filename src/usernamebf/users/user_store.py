"""Kho user chính xác (authoritative) trong bộ nhớ.

Đây là nguồn sự thật cho câu hỏi "username đã bị lấy chưa"; Bloom filter chỉ
dùng để tránh gọi tới đây khi chắc chắn chưa có.
"""
from __future__ import annotations

import random
import string
import threading
import time
from dataclasses import dataclass
from typing import Iterator, Optional, Protocol

from usernamebf.types.username_types import Username, normalize_username


class UserStore(Protocol):
    def exists(self, name: str) -> bool: ...

    def add(self, name: str, password: str = "", email: Optional[str] = None) -> bool: ...

    def list_all(self) -> list[str]: ...


@dataclass
class UserRecord:
    username: Username
    password: str
    email: str
    created_at: float
    last_login: Optional[float] = None


_PREFIXES = ["user", "test", "demo", "admin", "guest", "member", "player", "customer"]
_SUFFIXES = ["123", "456", "789", "xyz", "abc", "pro", "dev", "app"]
_ADJECTIVES = ["fast", "cool", "smart", "super", "mega", "ultra", "prime", "elite"]
_NOUNS = ["cat", "dog", "bird", "fish", "lion", "tiger", "bear", "wolf"]


class InMemoryUserStore:
    def __init__(self) -> None:
        """Khởi tạo kho user rỗng, dùng lock để thread-safe."""
        self._users: dict[Username, UserRecord] = {}
        self._lock = threading.RLock()

    def exists(self, name: str) -> bool:
        """Kiểm tra chính xác username đã tồn tại hay chưa."""
        key = normalize_username(name)
        with self._lock:
            return key in self._users

    def add(self, name: str, password: str = "", email: Optional[str] = None) -> bool:
        """Tạo user mới; trả False nếu username đã có (chèn nguyên tử dưới lock)."""
        key = normalize_username(name)
        with self._lock:
            if key in self._users:
                return False
            self._users[key] = UserRecord(
                username=key,
                password=password,
                email=email or f"{key}@example.com",
                created_at=time.time(),
            )
            return True

    def remove(self, name: str) -> bool:
        key = normalize_username(name)
        with self._lock:
            return self._users.pop(key, None) is not None

    def get(self, name: str) -> Optional[UserRecord]:
        key = normalize_username(name)
        with self._lock:
            return self._users.get(key)

    def list_all(self) -> list[str]:
        """Snapshot toàn bộ username, dùng cho populate/migration, không dùng trên hot path."""
        with self._lock:
            return list(self._users.keys())

    def __iter__(self) -> Iterator[UserRecord]:
        with self._lock:
            snapshot = list(self._users.values())
        return iter(snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)

    def populate_random(self, count: int, rng: Optional[random.Random] = None) -> int:
        """Sinh ngẫu nhiên tới `count` user demo, trả về số user thực sự được tạo."""
        rng = rng or random.Random()
        created = 0
        for _ in range(count):
            name = self.random_username(rng)
            password = "".join(rng.choices(string.ascii_letters + string.digits + "!@#$%^&*", k=12))
            if self.add(name, password):
                created += 1
        return created

    @staticmethod
    def random_username(rng: random.Random) -> str:
        """Sinh username theo 4 kiểu: prefix+số, tính từ+danh từ, chuỗi+suffix, ngẫu nhiên."""
        kind = rng.randrange(4)
        if kind == 0:
            return f"{rng.choice(_PREFIXES)}{rng.randrange(9999)}"
        if kind == 1:
            return f"{rng.choice(_ADJECTIVES)}{rng.choice(_NOUNS)}"
        if kind == 2:
            return "".join(rng.choices(string.ascii_lowercase, k=5)) + rng.choice(_SUFFIXES)
        return "".join(rng.choices(string.ascii_lowercase, k=8))
