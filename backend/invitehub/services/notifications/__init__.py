"""E-mail and SMS delivery with provider retry and fail-over."""

from .dispatcher import ChannelDispatcher, NotificationDispatcher
from .providers import (
    EMAIL_CHANNEL,
    SMS_CHANNEL,
    EmailContent,
    NotificationProvider,
    ProviderConfigurationError,
    ProviderError,
)
from .templates import EmailTemplateRenderer

__all__ = [
    "ChannelDispatcher",
    "NotificationDispatcher",
    "EMAIL_CHANNEL",
    "SMS_CHANNEL",
    "EmailContent",
    "NotificationProvider",
    "ProviderConfigurationError",
    "ProviderError",
    "EmailTemplateRenderer",
]
