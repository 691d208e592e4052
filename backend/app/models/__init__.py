from .base import Base
from .credit import (
    REASON_ADMIN_GRANT,
    REASON_CHAT_USAGE,
    REASON_MEDIA_USAGE,
    REASON_PERIOD_RESET,
    CreditTransaction,
)
from .user import User

__all__ = [
    "REASON_ADMIN_GRANT",
    "REASON_CHAT_USAGE",
    "REASON_MEDIA_USAGE",
    "REASON_PERIOD_RESET",
    "Base",
    "CreditTransaction",
    "User",
]
