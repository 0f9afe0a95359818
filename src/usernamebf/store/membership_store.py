"""Store bền vững cho shadow set và metadata của cache.

Shadow set là lịch sử chính xác mọi username đã thêm; mảng bit Bloom chỉ là
bản nén suy ra từ nó và luôn được dựng lại bằng cách phát lại shadow set.
"""
from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from usernamebf.bloom.bloom_params import BloomParams
from usernamebf.errors import InvalidInput


@dataclass(frozen=True)
class CacheMetadata:
    capacity: int
    target_error_rate: float

    def to_params(self) -> BloomParams:
        return BloomParams.for_capacity(self.capacity, self.target_error_rate)

    def to_json(self) -> str:
        return json.dumps({"capacity": self.capacity, "error_rate": self.target_error_rate})

    @classmethod
    def from_json(cls, raw: str | bytes) -> "CacheMetadata":
        """Đọc metadata JSON; thiếu trường hoặc sai kiểu thì báo InvalidInput."""
        try:
            data = json.loads(raw)
            return cls(capacity=int(data["capacity"]), target_error_rate=float(data["error_rate"]))
        except (ValueError, KeyError, TypeError) as exc:
            raise InvalidInput(f"malformed cache metadata: {raw!r}") from exc


class MembershipStore(Protocol):
    def persist_metadata(self, meta: CacheMetadata) -> None: ...

    def load_metadata(self) -> Optional[CacheMetadata]: ...

    def record_element(self, name: str) -> bool: ...

    def record_elements(self, names: Iterable[str]) -> int: ...

    def remove_element(self, name: str) -> bool: ...

    def list_elements(self) -> list[str]: ...

    def element_count(self) -> int: ...

    def has_metadata(self) -> bool: ...

    def has_elements(self) -> bool: ...

    def clear(self) -> None: ...

    def ping(self) -> bool: ...


class InMemoryMembershipStore:
    """Store trong tiến trình, cùng hợp đồng với RedisMembershipStore (dev/test)."""

    def __init__(self) -> None:
        self._metadata: Optional[CacheMetadata] = None
        self._elements: set[str] = set()
        self._lock = threading.RLock()

    def persist_metadata(self, meta: CacheMetadata) -> None:
        with self._lock:
            self._metadata = meta

    def load_metadata(self) -> Optional[CacheMetadata]:
        with self._lock:
            return self._metadata

    def record_element(self, name: str) -> bool:
        """Thêm vào shadow set; trả True nếu phần tử mới (idempotent)."""
        with self._lock:
            if name in self._elements:
                return False
            self._elements.add(name)
            return True

    def record_elements(self, names: Iterable[str]) -> int:
        with self._lock:
            before = len(self._elements)
            self._elements.update(names)
            return len(self._elements) - before

    def remove_element(self, name: str) -> bool:
        with self._lock:
            if name not in self._elements:
                return False
            self._elements.discard(name)
            return True

    def list_elements(self) -> list[str]:
        """Trả về snapshot shadow set để tránh xung đột khi lock."""
        with self._lock:
            return list(self._elements)

    def element_count(self) -> int:
        with self._lock:
            return len(self._elements)

    def has_metadata(self) -> bool:
        with self._lock:
            return self._metadata is not None

    def has_elements(self) -> bool:
        with self._lock:
            return bool(self._elements)

    def clear(self) -> None:
        with self._lock:
            self._metadata = None
            self._elements.clear()

    def ping(self) -> bool:
        return True
