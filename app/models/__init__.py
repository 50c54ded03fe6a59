from app.models.chat_message import ChatMessage
from app.models.chat_session import ChatSession
from app.models.rate_limit import RateLimitRecord

__all__ = [
    "ChatMessage",
    "ChatSession",
    "RateLimitRecord",
]
