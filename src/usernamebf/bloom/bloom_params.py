"""Tiện ích tham số Bloom filter.

Công thức m/k chỉ nằm ở đây; load, rebuild và clear đều phải đi qua
BloomParams.for_capacity để cho ra cùng m, k sau mỗi lần khởi động lại.
"""
from __future__ import annotations

import math
from dataclasses import dataclass

from usernamebf.errors import InvalidInput


@dataclass(frozen=True)
class BloomParams:
    capacity: int
    target_error_rate: float
    m_bits: int
    k_hash: int

    @staticmethod
    def for_capacity(capacity: int, target_error_rate: float) -> "BloomParams":
        """Tính m (bit) và k (số hash) tối ưu cho sức chứa và FPR mong muốn."""
        if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0:
            raise InvalidInput("capacity must be a positive integer")
        if not (0 < target_error_rate < 1):
            raise InvalidInput("target_error_rate must be in (0,1)")

        m_bits = int(math.ceil(-capacity * math.log(target_error_rate) / (math.log(2) ** 2)))
        k_hash = max(1, int(math.ceil((m_bits / capacity) * math.log(2))))
        return BloomParams(
            capacity=capacity,
            target_error_rate=float(target_error_rate),
            m_bits=m_bits,
            k_hash=k_hash,
        )
