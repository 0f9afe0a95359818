"""Bloom filter cho kiểm tra nhanh username có thể đã tồn tại."""
from __future__ import annotations

import math
import threading
from typing import Iterable, Optional

import mmh3
from bitarray import bitarray

from usernamebf.bloom.bloom_params import BloomParams
from usernamebf.types.username_types import normalize_username


class BloomFilter:
    def __init__(self, params: BloomParams) -> None:
        """Khởi tạo Bloom Filter từ BloomParams, mảng bit rỗng, dùng lock để thread-safe."""
        self._params = params
        self._m = params.m_bits
        self._k = params.k_hash
        self._bits = bitarray(self._m)
        self._bits.setall(0)
        self._inserted = 0
        self._lock = threading.RLock()

    @classmethod
    def from_capacity(cls, capacity: int, target_error_rate: float) -> "BloomFilter":
        return cls(BloomParams.for_capacity(capacity, target_error_rate))

    def add(self, username: str) -> bool:
        """Thêm username (đặt k bit); trả True nếu có ít nhất một bit mới được bật."""
        key = normalize_username(username)
        positions = self._positions(key)
        with self._lock:
            flipped = False
            for pos in positions:
                if not self._bits[pos]:
                    self._bits[pos] = 1
                    flipped = True
            # Thêm trùng không làm tăng bộ đếm; va chạm dương giả cũng không được đếm.
            if flipped:
                self._inserted += 1
            return flipped

    def add_many(self, usernames: Iterable[str]) -> int:
        """Thêm nhiều username tuần tự, trả về số username thực sự làm đổi mảng bit."""
        added = 0
        for username in usernames:
            if self.add(username):
                added += 1
        return added

    def might_contain(self, username: str) -> bool:
        """Kiểm tra nhanh: False là chắc chắn chưa có, True là có thể có (có FPR)."""
        key = normalize_username(username)
        positions = self._positions(key)
        with self._lock:
            return all(self._bits[pos] for pos in positions)

    def __contains__(self, username: str) -> bool:
        return self.might_contain(username)

    def positions(self, username: str) -> list[int]:
        """Trả về k vị trí bit của username (đã chuẩn hóa), phục vụ debug."""
        return self._positions(normalize_username(username))

    def estimate_fpr(self, n: Optional[int] = None) -> float:
        """Ước lượng xác suất dương tính giả theo công thức chuẩn (1 - e^{-kn/m})^k.

        Mặc định n là số lần add làm lật bit; bên quản lý cache truyền vào số
        username phân biệt thực tế (lớn hơn khi đã có va chạm dương giả).
        """
        if n is None:
            with self._lock:
                n = self._inserted
        n = float(n)
        if n == 0:
            return 0.0
        return (1.0 - math.exp(-self._k * n / float(self._m))) ** self._k

    def fill_ratio(self) -> float:
        """Tỉ lệ bit đã bật trên tổng m bit."""
        with self._lock:
            return self._bits.count(1) / float(self._m)

    @property
    def params(self) -> BloomParams:
        return self._params

    @property
    def m_bits(self) -> int:
        return self._m

    @property
    def k_hash(self) -> int:
        return self._k

    @property
    def capacity(self) -> int:
        return self._params.capacity

    @property
    def target_error_rate(self) -> float:
        return self._params.target_error_rate

    @property
    def inserted_count(self) -> int:
        """Số lần add làm lật ít nhất một bit (không tính thêm trùng và va chạm dương giả)."""
        with self._lock:
            return self._inserted

    def __len__(self) -> int:
        return self.inserted_count

    def __repr__(self) -> str:
        return (
            f"BloomFilter(m={self._m:,} bits, k={self._k}, "
            f"inserted={self.inserted_count:,}, "
            f"current_fpr≈{self.estimate_fpr():.4%}, target_fpr={self.target_error_rate:.2%})"
        )

    # Hàm nội bộ
    def _positions(self, key: str) -> list[int]:
        """Sinh k vị trí bit bằng double hashing (MurmurHash3 128-bit, seed cố định)."""
        data = key.encode("utf-8")
        h1 = mmh3.hash128(data, 0)
        h2 = mmh3.hash128(data, 42)
        # Kirsch-Mitzenmacher: g_i = h1 + i*h2
        return [(h1 + i * h2) % self._m for i in range(self._k)]
