"""Trình quản lý vòng đời cache username: Bloom trong bộ nhớ + shadow set bền vững.

Engine Bloom không bao giờ được lưu dạng nhị phân; mỗi lần initialize/rebuild
đều dựng engine mới rồi phát lại toàn bộ shadow set vào đó. Engine mới chỉ được
công bố (gán vào self._engine) sau khi đã phát lại xong.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Iterable, Optional

from usernamebf.bloom.bloom_filter import BloomFilter
from usernamebf.config import CacheSettings
from usernamebf.errors import (
    AlreadyInitialized,
    CacheNotInitialized,
    InconsistentCache,
    StoreUnavailable,
)
from usernamebf.metrics.metrics import Metrics
from usernamebf.store.membership_store import CacheMetadata, MembershipStore
from usernamebf.types.username_types import normalize_username

logger = logging.getLogger(__name__)

MAX_REBUILD_EVENTS = 100


class CacheState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"


@dataclass
class ValidationReport:
    is_valid: bool
    stored_count: int
    engine_count: int
    errors: list[str] = field(default_factory=list)

    def raise_for_status(self) -> None:
        if not self.is_valid:
            raise InconsistentCache("; ".join(self.errors) or "cache validation failed")

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CacheStats:
    capacity: int
    target_error_rate: float
    estimated_element_count: int
    bit_array_size: int
    hash_count: int
    estimated_fpr: float
    persistence_failures: int
    state: str

    def to_dict(self) -> dict:
        return asdict(self)


class CacheManager:
    def __init__(
        self,
        store: MembershipStore,
        settings: Optional[CacheSettings] = None,
        metrics: Optional[Metrics] = None,
    ) -> None:
        """Khởi tạo controller ở trạng thái UNINITIALIZED; store và settings được tiêm từ ngoài."""
        self.store = store
        self.settings = settings or CacheSettings()
        self.metrics = metrics or Metrics()
        self._configured = CacheMetadata(self.settings.capacity, self.settings.error_rate)
        # Dựng sớm để tham số sai báo lỗi ngay khi khởi tạo.
        self._configured.to_params()
        self._active = self._configured
        self._engine: Optional[BloomFilter] = None
        # Số username phân biệt đã nạp vào engine hiện tại (không suy ra từ bit lật).
        self._count = 0
        # Username đã vào engine nhưng ghi shadow set thất bại, đã được đếm.
        self._unpersisted: set[str] = set()
        self._state = CacheState.UNINITIALIZED
        self._lock = threading.RLock()
        self.rebuild_events: list[str] = []

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def metadata(self) -> CacheMetadata:
        return self._active

    def initialize(self, strict: bool = False) -> None:
        """Nạp metadata + shadow set, seed dữ liệu mẫu nếu store rỗng (tùy cấu hình), dựng engine."""
        with self._lock:
            if self._state is CacheState.READY:
                if strict:
                    raise AlreadyInitialized("cache already initialized")
                logger.warning("[Init] Cache đã sẵn sàng, bỏ qua initialize()")
                return

            meta = self.store.load_metadata()
            elements = self.store.list_elements()

            if meta is None:
                if elements:
                    logger.warning(
                        "[Init] Thiếu metadata nhưng shadow set có %d phần tử, ghi lại metadata từ cấu hình",
                        len(elements),
                    )
                meta = self._configured
                self.store.persist_metadata(meta)
            elif meta != self._configured:
                logger.warning(
                    "[Init] Metadata đã lưu khác cấu hình (stored=%s configured=%s), dùng bản đã lưu",
                    meta,
                    self._configured,
                )

            if not elements and self.settings.seed_bootstrap:
                seed = list(dict.fromkeys(normalize_username(n) for n in self.settings.bootstrap_usernames))
                self.store.record_elements(seed)
                elements = seed
                logger.info("[Init] Store rỗng, đã seed %d username mẫu", len(seed))

            self._active = meta
            self._publish(self._replay(meta, elements), len(elements))
            self._state = CacheState.READY
            logger.info(
                "[Init] Cache sẵn sàng: elements=%d m_bits=%d k_hash=%d capacity=%d error_rate=%s",
                len(elements),
                self._engine.m_bits,
                self._engine.k_hash,
                meta.capacity,
                meta.target_error_rate,
            )

    def might_exist(self, name: str) -> bool:
        """Tra cứu nhanh trong engine (chỉ đọc): False là chắc chắn chưa có.

        Sau clear() engine là bản rỗng nên mọi tra cứu trả False cho tới khi initialize() lại.
        """
        key = normalize_username(name)
        engine = self._engine
        if engine is None:
            raise CacheNotInitialized("Bloom filter not initialized")
        return engine.might_contain(key)

    def add(self, name: str) -> bool:
        """Thêm vào engine rồi ghi shadow set; trả False nếu ghi store thất bại.

        Không rollback phần đã thêm vào engine: engine đi trước store tạm thời
        và sẽ tự khớp lại ở lần rebuild() kế tiếp. Giữ lock suốt thao tác để
        rebuild() không chụp shadow set giữa lúc engine cũ đã có tên còn store chưa.
        """
        key = normalize_username(name)
        with self._lock:
            engine = self._require_ready()
            seen = engine.might_contain(key)
            engine.add(key)
            try:
                recorded = self.store.record_element(key)
            except StoreUnavailable as exc:
                if not seen:
                    self._count += 1
                    self._unpersisted.add(key)
                self.metrics.record_persistence_failure()
                logger.error("[Add] Ghi shadow set thất bại cho '%s', cần rebuild sau: %s", key, exc)
                return False
            if recorded:
                if key in self._unpersisted:
                    self._unpersisted.discard(key)
                else:
                    self._count += 1
            self.metrics.record_insertion()
            return True

    def rebuild(self, reason: str = "manual") -> int:
        """Đọc lại shadow set, dựng engine mới và công bố nguyên tử; trả về số phần tử đã phát lại."""
        with self._lock:
            self._require_ready()
            started = time.perf_counter()
            elements = self.store.list_elements()
            prev_count = self._count
            engine = self._replay(self._active, elements)
            self._publish(engine, len(elements))
            self.metrics.record_rebuild()
            self._record_rebuild_event(reason, len(elements), engine, prev_count, started)
            return len(elements)

    def refresh_cache(self) -> None:
        """Reset toàn bộ: clear() rồi initialize() (seed lại nếu store rỗng và có bật seed)."""
        logger.info("[Refresh] Làm mới cache...")
        with self._lock:
            self.clear()
            self.initialize()
        logger.info("[Refresh] Hoàn tất")

    def clear(self) -> None:
        """Xóa store bền vững, thay engine bằng bản rỗng và về trạng thái UNINITIALIZED.

        Store được xóa trước; nếu lỗi thì engine và trạng thái giữ nguyên.
        """
        with self._lock:
            self.store.clear()
            self._state = CacheState.UNINITIALIZED
            self._active = self._configured
            self._publish(BloomFilter(self._configured.to_params()), 0)
            logger.info("[Clear] Đã xóa Bloom filter và shadow set")

    def populate_from(self, names: Iterable[str]) -> int:
        """Reset cache rồi nạp toàn bộ username từ kho chính xác (migration một lần).

        Trả về số username phân biệt đã nạp.
        """
        started = time.perf_counter()
        with self._lock:
            self.clear()
            self.initialize()
            keys = list(dict.fromkeys(normalize_username(n) for n in names))
            added = self.store.record_elements(keys)
            self._require_ready().add_many(keys)
            self._count += added
        logger.info(
            "[Populate] Đã nạp %d username trong %.0f ms",
            len(keys),
            (time.perf_counter() - started) * 1000,
        )
        return len(keys)

    def validate_cache(self) -> ValidationReport:
        """So khớp shadow set với engine; không ném lỗi, trả về báo cáo chẩn đoán."""
        errors: list[str] = []
        engine_count = self._count
        try:
            has_meta = self.store.has_metadata()
            has_elements = self.store.has_elements()
            stored_count = self.store.element_count()
        except StoreUnavailable as exc:
            errors.append(f"Cache validation error: {exc}")
            return ValidationReport(False, 0, engine_count, errors)

        if self._state is not CacheState.READY:
            errors.append("Cache not initialized")
        if not has_meta and has_elements:
            errors.append("Filter metadata missing but elements exist")
        if has_meta and not has_elements and engine_count > 0:
            errors.append("Filter metadata exists but elements missing")

        tolerance = self.settings.validation_tolerance
        if abs(stored_count - engine_count) > tolerance:
            errors.append(
                f"Element count mismatch: stored={stored_count}, filter={engine_count} (tolerance={tolerance})"
            )

        report = ValidationReport(not errors, stored_count, engine_count, errors)
        if not report.is_valid:
            logger.warning("[Validate] Cache không hợp lệ: %s", "; ".join(errors))
        return report

    def stats(self) -> CacheStats:
        with self._lock:
            engine = self._engine
            count = self._count
        params = self._active.to_params()
        return CacheStats(
            capacity=params.capacity,
            target_error_rate=params.target_error_rate,
            estimated_element_count=count,
            bit_array_size=params.m_bits,
            hash_count=params.k_hash,
            estimated_fpr=engine.estimate_fpr(count) if engine is not None else 0.0,
            persistence_failures=self.metrics.persistence_failures,
            state=self._state.value,
        )

    # Hàm nội bộ
    def _require_ready(self) -> BloomFilter:
        """Lấy một tham chiếu engine duy nhất; báo CacheNotInitialized nếu chưa ở trạng thái READY."""
        engine = self._engine
        if engine is None or self._state is not CacheState.READY:
            raise CacheNotInitialized("Bloom filter not initialized")
        return engine

    @staticmethod
    def _replay(meta: CacheMetadata, elements: Iterable[str]) -> BloomFilter:
        """Dựng engine mới từ metadata và phát lại toàn bộ phần tử (chưa công bố)."""
        engine = BloomFilter(meta.to_params())
        engine.add_many(elements)
        return engine

    def _publish(self, engine: BloomFilter, count: int) -> None:
        with self._lock:
            self._engine = engine
            self._count = count
            self._unpersisted.clear()

    def _record_rebuild_event(
        self,
        reason: str,
        count: int,
        engine: BloomFilter,
        prev_count: int,
        started: float,
    ) -> None:
        """Ghi log và lưu sự kiện rebuild phục vụ debug (giữ tối đa MAX_REBUILD_EVENTS)."""
        event = (
            f"reason={reason}, time={int(time.time())}, elements={count}, "
            f"m_bits={engine.m_bits}, k_hash={engine.k_hash}, prev_engine_count={prev_count}, "
            f"bit_flip_adds={engine.inserted_count}, duration_ms={(time.perf_counter() - started) * 1000:.1f}"
        )
        self.rebuild_events.append(event)
        del self.rebuild_events[:-MAX_REBUILD_EVENTS]
        logger.info("[Rebuild] %s", event)
