"""
Redis 客户端的唯一构造入口。

redis.asyncio 的连接池绑定在创建它的事件循环上：
- HTTP 进程只有一个循环，`app.deps.get_redis` 拿到的始终是同一个客户端；
- Celery 任务每次 `asyncio.run(...)` 都是新循环，必须在任务结束前调用
  `close_redis_client_for_current_loop()`，否则连接会泄漏。
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any
from weakref import WeakKeyDictionary

from redis.asyncio import Redis

from .settings import settings

_clients: WeakKeyDictionary[asyncio.AbstractEventLoop, Redis] = WeakKeyDictionary()


def _running_loop() -> asyncio.AbstractEventLoop:
    try:
        return asyncio.get_running_loop()
    except RuntimeError as exc:
        raise RuntimeError(
            "get_redis_client() 只能在运行中的事件循环内调用（async 函数或 asyncio.run 内部）"
        ) from exc


def _create_client() -> Redis:
    return Redis.from_url(settings.redis_url, decode_responses=True)


def get_redis_client() -> Redis:
    """当前事件循环对应的 Redis 客户端，首次调用时创建。"""
    loop = _running_loop()
    if loop not in _clients:
        _clients[loop] = _create_client()
    return _clients[loop]


async def close_redis_client(client: Any) -> None:
    """关闭客户端并断开连接池；兼容只提供 close() 的旧版本客户端。"""
    for name in ("aclose", "close"):
        closer = getattr(client, name, None)
        if callable(closer):
            result = closer()
            if inspect.isawaitable(result):
                await result
            break

    disconnect = getattr(getattr(client, "connection_pool", None), "disconnect", None)
    if callable(disconnect):
        result = disconnect()
        if inspect.isawaitable(result):
            await result


async def close_redis_client_for_current_loop() -> None:
    client = _clients.pop(_running_loop(), None)
    if client is not None:
        await close_redis_client(client)


__all__ = [
    "close_redis_client",
    "close_redis_client_for_current_loop",
    "get_redis_client",
]
