from __future__ import annotations

import datetime as dt

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    DateTime(timezone=True) 的跨方言兼容：
    - Postgres：原生时区支持，统一转为 UTC；
    - SQLite：存为 naive UTC，读取时补齐 tzinfo。

    积分周期重置依赖 `now - last_credit_reset` 的比较，读出的值必须始终带时区。
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or not isinstance(value, dt.datetime):
            return value
        if value.tzinfo is None:
            # 约定：naive 视为 UTC
            value = value.replace(tzinfo=dt.UTC)
        as_utc = value.astimezone(dt.UTC)
        if dialect.name == "postgresql":
            return as_utc
        return as_utc.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None or not isinstance(value, dt.datetime):
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


__all__ = ["UTCDateTime"]
