"""Giao thức kiểm tra hai tầng: Bloom (rẻ) trước, kho user chính xác sau.

Đây là bề mặt mà tầng HTTP gọi vào; mọi giá trị trả về là dict/dataclass thuần.
"""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional

from usernamebf.manager.cache_manager import CacheManager
from usernamebf.metrics.metrics import Metrics
from usernamebf.types.username_types import Username, normalize_username
from usernamebf.users.user_store import UserStore

logger = logging.getLogger(__name__)


class CheckResult(Enum):
    CACHE_MISS = "cache_miss"
    TAKEN = "taken"
    BLOOM_FALSE_POSITIVE = "bloom_false_positive"


@dataclass(frozen=True)
class AvailabilityResult:
    normalized_name: Username
    might_exist: bool
    available: bool
    result: CheckResult

    def to_dict(self) -> dict:
        data = asdict(self)
        data["result"] = self.result.value
        return data


@dataclass(frozen=True)
class RegistrationResult:
    normalized_name: Username
    registered: bool
    cached: bool


class UsernameService:
    def __init__(
        self,
        cache: CacheManager,
        users: UserStore,
        metrics: Optional[Metrics] = None,
    ) -> None:
        """Khởi tạo bộ phối hợp cache + kho user; metrics dùng chung với cache nếu không truyền."""
        self.cache = cache
        self.users = users
        self.metrics = metrics or cache.metrics

    def validate_username(self, name: str) -> dict:
        """Chỉ hỏi Bloom filter: {"normalized_name", "might_exist"}."""
        key = normalize_username(name)
        might_exist = self.cache.might_exist(key)
        logger.debug("Username validation check: username=%s might_exist=%s", key, might_exist)
        return {"normalized_name": key, "might_exist": might_exist}

    def check_availability(self, name: str) -> AvailabilityResult:
        """Tra cứu hai tầng: Bloom âm là chắc chắn trống, Bloom dương thì hỏi kho user."""
        start = time.perf_counter_ns()
        key = normalize_username(name)

        # Lỗi store/cache phải nổi lên, không bao giờ được coi là "available".
        in_bloom = self.cache.might_exist(key)
        self.metrics.record_cache_check(in_bloom)
        if not in_bloom:
            self.metrics.record_lookup_latency(self._micros_since(start))
            return AvailabilityResult(key, False, True, CheckResult.CACHE_MISS)

        exists = self.users.exists(key)
        self.metrics.record_authoritative_check(exists)
        self.metrics.record_lookup_latency(self._micros_since(start))

        if exists:
            return AvailabilityResult(key, True, False, CheckResult.TAKEN)
        return AvailabilityResult(key, True, True, CheckResult.BLOOM_FALSE_POSITIVE)

    def register(self, name: str, password: str = "", email: Optional[str] = None) -> RegistrationResult:
        """Tạo user ở kho chính xác trước; chỉ khi tạo thành công mới thêm vào cache."""
        key = normalize_username(name)
        if not self.users.add(key, password, email):
            logger.info("Registration rejected, username taken: %s", key)
            return RegistrationResult(key, registered=False, cached=False)

        cached = self.cache.add(key)
        if not cached:
            logger.warning("User %s created but cache persistence failed; schedule a rebuild", key)
        return RegistrationResult(key, registered=True, cached=cached)

    def add_username(self, name: str) -> None:
        """Thêm username vào cache (idempotent); lỗi ghi store chỉ được log, không ném."""
        self.cache.add(name)

    def stats(self) -> dict:
        return self.cache.stats().to_dict()

    def clear_cache(self) -> None:
        """Xóa cache rồi khởi tạo lại ngay để tầng HTTP vẫn phục vụ được."""
        self.cache.clear()
        self.cache.initialize()
        logger.info("Bloom filter cache cleared and reinitialized")

    def rebuild_cache(self) -> None:
        self.cache.rebuild(reason="admin")

    def refresh_cache(self) -> None:
        self.cache.refresh_cache()

    def validate_cache(self) -> dict:
        return self.cache.validate_cache().to_dict()

    def health(self) -> dict:
        return {
            "store_reachable": self.cache.store.ping(),
            "cache_state": self.cache.state.value,
            "metrics": self.metrics.snapshot(),
        }

    def populate_from_user_store(self) -> int:
        """Nạp lại toàn bộ cache từ kho user (migration một lần, không dùng trên hot path)."""
        return self.cache.populate_from(self.users.list_all())

    @staticmethod
    def _micros_since(start_ns: int) -> int:
        """Tính thời gian đã trôi qua (micro giây) từ thời điểm start_ns."""
        end = time.perf_counter_ns()
        return int((end - start_ns) / 1000)
