"""Tiện ích khóa username.

Mọi username đi vào Bloom filter hay shadow set đều phải qua normalize_username
để "Bob", " bob " và "BOB" trở thành cùng một khóa.
"""
from __future__ import annotations

from typing import NewType

from usernamebf.errors import InvalidInput

# Alias kiểu để diễn đạt ý nghĩa: chuỗi đã trim + lower-case.
Username = NewType("Username", str)


def normalize_username(value: object) -> Username:
    """Chuẩn hóa username (trim, lower-case); báo InvalidInput nếu rỗng hoặc không phải chuỗi."""
    if not isinstance(value, str):
        raise InvalidInput(f"username must be a string, got {type(value).__name__}")
    name = value.strip().lower()
    if not name:
        raise InvalidInput("username must be a non-empty string")
    return Username(name)
