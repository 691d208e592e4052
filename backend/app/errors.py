"""
统一的 HTTP 错误构造工具。

路由层直接 `raise bad_request("...")` 即可，返回体统一为
{"detail": {"error": <code>, "message": <说明>}}。
"""

from __future__ import annotations

from fastapi import HTTPException, status


def http_error(status_code: int, *, error: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error, "message": message})


def bad_request(message: str, *, error: str = "bad_request") -> HTTPException:
    return http_error(status.HTTP_400_BAD_REQUEST, error=error, message=message)


def unauthorized(message: str = "未登录或登录已过期") -> HTTPException:
    return http_error(status.HTTP_401_UNAUTHORIZED, error="unauthorized", message=message)


def forbidden(message: str = "无权访问") -> HTTPException:
    return http_error(status.HTTP_403_FORBIDDEN, error="forbidden", message=message)


def not_found(message: str) -> HTTPException:
    return http_error(status.HTTP_404_NOT_FOUND, error="not_found", message=message)


__all__ = [
    "bad_request",
    "forbidden",
    "http_error",
    "not_found",
    "unauthorized",
]
