"""Cấu hình logging dùng chung cho demo và các tiến trình nhúng cache."""
from __future__ import annotations

import logging
import os
from typing import Optional

logger = logging.getLogger("usernamebf")


def setup_logging(level: Optional[str] = None) -> None:
    """Bật basicConfig nếu root logger chưa có handler, rồi đặt mức log cho logger gói.

    Mức log lấy từ tham số, hoặc biến môi trường LOG_LEVEL (mặc định INFO).
    """
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )
    logger.setLevel(log_level)
