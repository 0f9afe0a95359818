"""Bộ đếm metrics gọn cho quan sát cache username."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field, fields


@dataclass
class Metrics:
    cache_checks: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    authoritative_hits: int = 0
    bloom_false_positives: int = 0
    insertions: int = 0
    persistence_failures: int = 0
    rebuilds: int = 0
    lookup_latency_total_us: int = 0
    lookup_count: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_cache_check(self, hit: bool) -> None:
        with self._lock:
            self.cache_checks += 1
            if hit:
                self.cache_hits += 1
            else:
                self.cache_misses += 1

    def record_authoritative_check(self, exists: bool) -> None:
        with self._lock:
            if exists:
                self.authoritative_hits += 1
            else:
                self.bloom_false_positives += 1

    def record_insertion(self) -> None:
        with self._lock:
            self.insertions += 1

    def record_persistence_failure(self) -> None:
        with self._lock:
            self.persistence_failures += 1

    def record_rebuild(self) -> None:
        with self._lock:
            self.rebuilds += 1

    def record_lookup_latency(self, micros: int) -> None:
        with self._lock:
            self.lookup_latency_total_us += micros
            self.lookup_count += 1

    def average_lookup_latency_us(self) -> float:
        if self.lookup_count == 0:
            return 0.0
        return self.lookup_latency_total_us / float(self.lookup_count)

    def observed_fpr(self) -> float:
        """Tỉ lệ dương giả quan sát được trên các lần cache báo "có thể tồn tại"."""
        if self.cache_hits == 0:
            return 0.0
        return self.bloom_false_positives / float(self.cache_hits)

    def snapshot(self) -> dict:
        with self._lock:
            data = {f.name: getattr(self, f.name) for f in fields(self) if not f.name.startswith("_")}
        data["average_lookup_latency_us"] = self.average_lookup_latency_us()
        data["observed_fpr"] = self.observed_fpr()
        return data
