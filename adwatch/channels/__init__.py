"""
Notification channel implementations.

Components:
    realtime: RedisRealtimePublisher (Redis pub/sub)
    email: SmtpEmailSender (SMTP)
    chat: PostgresChatPoster (conversation messages)
    templates: Subject, body and chat text rendering
"""

from adwatch.channels.chat import PostgresChatPoster
from adwatch.channels.email import SmtpEmailSender
from adwatch.channels.realtime import RedisRealtimePublisher

__all__: list[str] = [
    "PostgresChatPoster",
    "RedisRealtimePublisher",
    "SmtpEmailSender",
]
