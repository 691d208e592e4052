"""
按用户维度的分布式互斥锁（Redis SET NX PX）。

积分扣减/入账是“读余额 -> 计算 -> 写回”的过程，同一用户的并发请求必须串行，
否则会出现两次扣减读到同一余额、都判定成功的丢失更新。

- 锁带过期时间（默认 30s），进程崩溃后自动释放，不会永久卡死；
- 获取失败时按固定间隔重试，超过次数抛出 UserLockTimeout；
- 释放时用 Lua 脚本原子地“比较 token 再删除”，避免误删已被他人重新获取的锁。
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.asyncio import Redis

from app.logging_config import logger

USER_LOCK_KEY = "credits:user:{user_id}:lock"

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class UserLockTimeout(RuntimeError):
    """Raised when the per-user lock could not be acquired in time."""


class UserLock:
    def __init__(
        self,
        redis: Redis,
        *,
        ttl_ms: int = 30_000,
        retries: int = 50,
        retry_delay_seconds: float = 0.1,
    ) -> None:
        self.redis = redis
        self.ttl_ms = ttl_ms
        self.retries = retries
        self.retry_delay_seconds = retry_delay_seconds
        self._release_script = redis.register_script(_RELEASE_SCRIPT)

    async def acquire(self, user_id: str) -> str:
        key = USER_LOCK_KEY.format(user_id=user_id)
        token = uuid.uuid4().hex
        for _ in range(self.retries):
            if await self.redis.set(key, token, nx=True, px=self.ttl_ms):
                return token
            await asyncio.sleep(self.retry_delay_seconds)
        raise UserLockTimeout(
            f"failed to acquire credit lock for user {user_id} after {self.retries} retries"
        )

    async def release(self, user_id: str, token: str) -> None:
        key = USER_LOCK_KEY.format(user_id=user_id)
        removed = await self._release_script(keys=[key], args=[token])
        if not removed:
            # 锁已过期，可能已被其他请求持有
            logger.warning("user_lock: lock for user %s expired before release", user_id)

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        token = await self.acquire(user_id)
        try:
            yield
        finally:
            await self.release(user_id, token)


__all__ = ["USER_LOCK_KEY", "UserLock", "UserLockTimeout"]
