"""CLI demo: cache username Bloom filter + shadow set Redis.

- Bước 1: khởi tạo cache (Redis hoặc memory theo CACHE_BACKEND), có thể nạp user demo ngẫu nhiên.
- Bước 2: kiểm tra username hai tầng, đăng ký user, xem thống kê và kiểm tra tính nhất quán.
- Menu console cho các thao tác quản trị cache: rebuild, refresh, clear.
"""

from __future__ import annotations

import os
import time
from typing import Optional

import psutil

from usernamebf.config import CacheSettings
from usernamebf.errors import CacheError
from usernamebf.factory import build_service
from usernamebf.log import setup_logging
from usernamebf.manager.username_service import CheckResult, UsernameService
from usernamebf.users.user_store import InMemoryUserStore

DEMO_USER_COUNT = 10_000


def _current_memory_bytes() -> Optional[int]:
    """Lấy RSS của tiến trình (bytes)."""
    try:
        return psutil.Process(os.getpid()).memory_info().rss
    except psutil.Error:
        return None


def populate_demo_users(service: UsernameService, count: int = DEMO_USER_COUNT) -> None:
    """Sinh user ngẫu nhiên ở kho chính xác rồi nạp lại toàn bộ vào cache."""
    users = service.users
    if not isinstance(users, InMemoryUserStore):
        print("Kho user hiện tại không hỗ trợ sinh dữ liệu demo.")
        return

    start_mem = _current_memory_bytes()
    start = time.time()
    created = users.populate_random(count)
    loaded = service.populate_from_user_store()
    elapsed = time.time() - start
    end_mem = _current_memory_bytes()

    print(f"[Populate] tạo_mới={created} nạp_vào_cache={loaded} thời_gian={elapsed:.2f}s")
    if start_mem is not None and end_mem is not None:
        print(f"[Populate] memory={end_mem:,} bytes (Δ={end_mem - start_mem:+,} bytes)")


def check_username(service: UsernameService) -> None:
    name = input("Nhập username: ")
    result = service.check_availability(name)
    if result.result is CheckResult.CACHE_MISS:
        verdict = "CÒN TRỐNG (Bloom âm, không cần hỏi kho user)"
    elif result.result is CheckResult.TAKEN:
        verdict = "ĐÃ CÓ NGƯỜI DÙNG"
    else:
        verdict = "CÒN TRỐNG (Bloom dương giả, kho user xác nhận chưa có)"
    print(f"'{result.normalized_name}' -> {verdict}")


def register_username(service: UsernameService) -> None:
    name = input("Nhập username cần đăng ký: ")
    password = input("Nhập mật khẩu: ")
    result = service.register(name, password)
    if not result.registered:
        print(f"'{result.normalized_name}' đã tồn tại.")
    elif not result.cached:
        print(f"Đã tạo '{result.normalized_name}' nhưng ghi cache thất bại, hãy rebuild.")
    else:
        print(f"Đã đăng ký '{result.normalized_name}'.")


def print_stats(service: UsernameService) -> None:
    stats = service.stats()
    metrics = service.metrics.snapshot()

    print("\n=== Thống kê cache ===")
    print(f"Trạng thái: {stats['state']}")
    print(f"Capacity: {stats['capacity']:,}  error_rate mục tiêu: {stats['target_error_rate']:.2%}")
    print(f"m_bits: {stats['bit_array_size']:,}  k_hash: {stats['hash_count']}")
    print(f"Số phần tử ước lượng: {stats['estimated_element_count']:,}")
    print(f"FPR ước lượng: {stats['estimated_fpr']:.4%}")
    print(f"Ghi store thất bại: {stats['persistence_failures']}")
    print("")
    print(f"Tổng lượt kiểm tra: {metrics['cache_checks']}")
    print(f" ├─ Bloom âm: {metrics['cache_misses']}")
    print(f" └─ Bloom dương: {metrics['cache_hits']}")
    print(f"     ├─ Kho user xác nhận: {metrics['authoritative_hits']}")
    print(f"     └─ Bloom false positive: {metrics['bloom_false_positives']}")
    print(f"Độ trễ tra cứu trung bình: {metrics['average_lookup_latency_us']:.1f} µs")


def validate(service: UsernameService) -> None:
    report = service.validate_cache()
    status = "HỢP LỆ" if report["is_valid"] else "KHÔNG HỢP LỆ (nên rebuild)"
    print(f"Cache {status}: stored={report['stored_count']} engine={report['engine_count']}")
    for error in report["errors"]:
        print(f" - {error}")


def main() -> None:
    setup_logging()
    print("=== Demo cache username (Bloom + shadow set) ===")
    settings = CacheSettings.from_env()
    service = build_service(settings, users=InMemoryUserStore())

    actions = {
        "1": ("Sinh user demo và nạp cache", populate_demo_users),
        "2": ("Kiểm tra username", check_username),
        "3": ("Đăng ký username", register_username),
        "4": ("Thống kê", print_stats),
        "5": ("Kiểm tra tính nhất quán cache", validate),
        "6": ("Rebuild từ shadow set", lambda s: s.rebuild_cache()),
        "7": ("Refresh (clear + initialize)", lambda s: s.refresh_cache()),
        "8": ("Clear và khởi tạo lại", lambda s: s.clear_cache()),
    }

    while True:
        print("\nMenu:")
        for key, (title, _) in actions.items():
            print(f" {key}. {title}")
        print(" 9. Thoát")
        choice = input("Chọn [1-9]: ").strip()

        if choice == "9":
            print("Thoát.")
            break
        action = actions.get(choice)
        if action is None:
            print("Lựa chọn không hợp lệ.")
            continue
        try:
            action[1](service)
        except CacheError as exc:
            print(f"Lỗi: {type(exc).__name__}: {exc}")


if __name__ == "__main__":
    main()
