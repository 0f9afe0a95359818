"""Các lỗi của cache tồn tại username."""
from __future__ import annotations


class CacheError(Exception):
    """Lỗi gốc của cache."""


class StoreUnavailable(CacheError):
    """Không liên lạc được với store bền vững (mất kết nối, timeout).

    Không bao giờ được hiểu là "phần tử không tồn tại".
    """


class InconsistentCache(CacheError):
    """Store và engine lệch nhau, hoặc clear chỉ xóa được một phần."""


class InvalidInput(CacheError, ValueError):
    """Username rỗng/sai kiểu hoặc tham số Bloom không hợp lệ."""


class AlreadyInitialized(CacheError):
    """Gọi initialize() khi cache đã sẵn sàng."""


class CacheNotInitialized(CacheError):
    """Thao tác cache trước khi initialize()."""
