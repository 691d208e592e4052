from .admin import (
    CreditOverviewResponse,
    TokenGrantRequest,
    TokenGrantResponse,
    UserCreditOverviewItem,
)
from .chat import ChatModelItem, ChatModelsResponse
from .credit import CreditTransactionResponse, CreditUsageStatsResponse
from .media import MediaGenerationRequest, MediaGenerationResponse

__all__ = [
    "ChatModelItem",
    "ChatModelsResponse",
    "CreditOverviewResponse",
    "CreditTransactionResponse",
    "CreditUsageStatsResponse",
    "MediaGenerationRequest",
    "MediaGenerationResponse",
    "TokenGrantRequest",
    "TokenGrantResponse",
    "UserCreditOverviewItem",
]
