"""Redis backend cho shadow set + metadata.

Bố cục khóa:
    <key>           chuỗi JSON {"capacity": ..., "error_rate": ...}
    <key>:elements  Redis SET chứa mọi username đã chuẩn hóa
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

import redis

from usernamebf.config import CacheSettings
from usernamebf.errors import InconsistentCache, StoreUnavailable
from usernamebf.store.membership_store import CacheMetadata

logger = logging.getLogger(__name__)

SADD_CHUNK = 1000
SSCAN_COUNT = 1000


def build_redis_client(settings: CacheSettings) -> redis.Redis:
    """Tạo một client Redis dùng chung cho cả tiến trình, có timeout giới hạn."""
    return redis.Redis.from_url(
        settings.redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_timeout_seconds,
        socket_connect_timeout=settings.redis_timeout_seconds,
    )


@contextmanager
def _store_errors(op: str) -> Iterator[None]:
    """Đổi lỗi mạng/timeout của redis-py thành StoreUnavailable."""
    try:
        yield
    except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as exc:
        raise StoreUnavailable(f"redis {op} failed: {exc}") from exc


def _text(value: str | bytes) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class RedisMembershipStore:
    def __init__(self, client: redis.Redis, key: str = "username_bloom_filter") -> None:
        self._client = client
        self.key = key
        self.elements_key = f"{key}:elements"

    def persist_metadata(self, meta: CacheMetadata) -> None:
        with _store_errors("SET"):
            self._client.set(self.key, meta.to_json())

    def load_metadata(self) -> Optional[CacheMetadata]:
        with _store_errors("GET"):
            raw = self._client.get(self.key)
        if raw is None:
            return None
        return CacheMetadata.from_json(raw)

    def record_element(self, name: str) -> bool:
        """SADD một username; trả True nếu phần tử mới."""
        with _store_errors("SADD"):
            return bool(self._client.sadd(self.elements_key, name))

    def record_elements(self, names: Iterable[str]) -> int:
        """SADD theo lô SADD_CHUNK phần tử, trả về số phần tử mới."""
        added = 0
        chunk: list[str] = []
        with _store_errors("SADD"):
            for name in names:
                chunk.append(name)
                if len(chunk) >= SADD_CHUNK:
                    added += int(self._client.sadd(self.elements_key, *chunk))
                    chunk = []
            if chunk:
                added += int(self._client.sadd(self.elements_key, *chunk))
        return added

    def remove_element(self, name: str) -> bool:
        with _store_errors("SREM"):
            return bool(self._client.srem(self.elements_key, name))

    def list_elements(self) -> list[str]:
        """Đọc toàn bộ shadow set bằng SSCAN (SSCAN có thể trả trùng nên gom qua set)."""
        with _store_errors("SSCAN"):
            members = {_text(m) for m in self._client.sscan_iter(self.elements_key, count=SSCAN_COUNT)}
        return list(members)

    def element_count(self) -> int:
        with _store_errors("SCARD"):
            return int(self._client.scard(self.elements_key))

    def has_metadata(self) -> bool:
        with _store_errors("EXISTS"):
            return bool(self._client.exists(self.key))

    def has_elements(self) -> bool:
        with _store_errors("EXISTS"):
            return bool(self._client.exists(self.elements_key))

    def clear(self) -> None:
        """Xóa cả metadata và shadow set; còn sót khóa nào thì báo InconsistentCache."""
        with _store_errors("DEL"):
            self._client.delete(self.key, self.elements_key)
            leftover = [k for k in (self.key, self.elements_key) if self._client.exists(k)]
        if leftover:
            raise InconsistentCache(f"clear left keys behind: {', '.join(leftover)}")
        logger.info("[Clear] Đã xóa khóa Redis %s và %s", self.key, self.elements_key)

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as exc:
            logger.warning("Redis ping failed: %s", exc)
            return False
