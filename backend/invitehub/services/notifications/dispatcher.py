"""
Notification Dispatcher - retry and provider fail-over for e-mail and SMS.

Contract per send:
1. Try the primary provider up to `retries` times.
2. If every attempt failed and a backup is configured, switch to the backup
   once with a fresh attempt counter.
3. If the backup is exhausted too, raise DeliveryError.

Provider names are validated when the dispatcher is built; provider clients
are constructed on first use and cached.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from invitehub.config import Settings, settings as default_settings
from invitehub.core import events
from invitehub.services.exceptions import DeliveryError

from .providers import (
    EMAIL_CHANNEL,
    SMS_CHANNEL,
    EmailContent,
    NotificationProvider,
    ProviderConfigurationError,
    ProviderError,
    ProviderFactory,
    resolve_provider_class,
    settings_provider_factory,
)
from .templates import EmailTemplateRenderer

logger = logging.getLogger(__name__)

EventPublisher = Callable[[str, Dict[str, Any]], Any]


class ChannelDispatcher:
    """Sends on one channel with retry and a single fail-over to the backup provider."""

    def __init__(
        self,
        channel: str,
        primary: str,
        factory: ProviderFactory,
        backup: Optional[str] = None,
        retries: int = 3,
        publish: EventPublisher = events.publish_event,
    ):
        resolve_provider_class(channel, primary)
        if backup:
            resolve_provider_class(channel, backup)

        self.channel = channel
        self.primary = primary.strip().lower()
        self.backup = backup.strip().lower() if backup else None
        self.factory = factory
        self.retries = max(1, retries)
        self.publish = publish
        self._providers: Dict[str, NotificationProvider] = {}

    @property
    def provider_chain(self) -> List[str]:
        chain = [self.primary]
        if self.backup and self.backup != self.primary:
            chain.append(self.backup)
        return chain

    def _get_provider(self, name: str) -> NotificationProvider:
        if name not in self._providers:
            self._providers[name] = self.factory(name)
        return self._providers[name]

    def send(self, target: str, content: Any) -> str:
        """
        Deliver content to target.

        Returns:
            Human-readable success message

        Raises:
            DeliveryError: when every provider in the chain is exhausted
        """
        tried: List[str] = []
        last_error: Optional[Exception] = None

        for index, name in enumerate(self.provider_chain):
            if index > 0:
                logger.warning(f"Switching to backup {self.channel} provider: {name}")
            tried.append(name)

            try:
                provider = self._get_provider(name)
            except ProviderConfigurationError as e:
                logger.error(f"{self.channel} provider {name} unavailable: {e}")
                last_error = e
                continue

            for attempt in range(1, self.retries + 1):
                try:
                    provider.send(target, content)
                except ProviderError as e:
                    last_error = e
                    logger.warning(
                        f"Failed attempt {attempt}/{self.retries} to send {self.channel} "
                        f"to {target} via {name}: {e}"
                    )
                    self.publish(
                        events.NOTIFICATION_ATTEMPT_FAILED,
                        {
                            "channel": self.channel,
                            "provider": name,
                            "target": target,
                            "attempt": attempt,
                            "error": str(e),
                        },
                    )
                    continue

                logger.info(f"{self.channel} sent to {target} via {name} on attempt {attempt}")
                self.publish(
                    events.NOTIFICATION_SENT,
                    {"channel": self.channel, "provider": name, "target": target, "attempt": attempt},
                )
                return f"{self.channel} sent to {target} via {name}"

        message = f"{self.channel} delivery to {target} failed after trying {', '.join(tried)}"
        logger.error(f"{message}: {last_error}")
        self.publish(
            events.NOTIFICATION_FAILED,
            {"channel": self.channel, "target": target, "providers": tried, "error": str(last_error)},
        )
        raise DeliveryError(message, channel=self.channel, providers=tried)

    def close(self) -> None:
        for provider in self._providers.values():
            provider.close()
        self._providers.clear()


def _format_expiry(expires_at: Any) -> str:
    # Job payloads carry ISO strings after the JSON round-trip through the broker
    if isinstance(expires_at, str):
        try:
            expires_at = datetime.fromisoformat(expires_at)
        except ValueError:
            return expires_at
    if isinstance(expires_at, datetime):
        return expires_at.strftime("%Y-%m-%d %H:%M UTC")
    return str(expires_at)


class NotificationDispatcher:
    """E-mail and SMS dispatch for invitation and reminder messages."""

    def __init__(
        self,
        email: ChannelDispatcher,
        sms: ChannelDispatcher,
        renderer: Optional[EmailTemplateRenderer] = None,
        frontend_url: Optional[str] = None,
        app_name: Optional[str] = None,
    ):
        self.email = email
        self.sms = sms
        self.renderer = renderer or EmailTemplateRenderer()
        self.frontend_url = (frontend_url or default_settings.FRONTEND_BASE_URL).rstrip("/")
        self.app_name = app_name or default_settings.APP_NAME

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "NotificationDispatcher":
        settings = settings or default_settings
        email = ChannelDispatcher(
            EMAIL_CHANNEL,
            primary=settings.EMAIL_PROVIDER,
            backup=settings.BACKUP_EMAIL_PROVIDER,
            factory=settings_provider_factory(EMAIL_CHANNEL, settings),
            retries=settings.NOTIFICATION_RETRIES,
        )
        sms = ChannelDispatcher(
            SMS_CHANNEL,
            primary=settings.SMS_PROVIDER,
            backup=settings.BACKUP_SMS_PROVIDER,
            factory=settings_provider_factory(SMS_CHANNEL, settings),
            retries=settings.NOTIFICATION_RETRIES,
        )
        return cls(email, sms, frontend_url=settings.FRONTEND_BASE_URL, app_name=settings.APP_NAME)

    def accept_url(self, token: str) -> str:
        return f"{self.frontend_url}/invite/accept?token={token}"

    def send_email(self, to: str, subject: str, text: str, html: Optional[str] = None) -> str:
        return self.email.send(to, EmailContent(subject=subject, text=text, html=html))

    def send_sms(self, phone_number: str, message: str) -> str:
        return self.sms.send(phone_number, message)

    # -------------------------------------------------------------------------
    # Invitation messages
    # -------------------------------------------------------------------------

    def _context(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "email": payload["email"],
            "role": payload.get("role", ""),
            "first_name": payload.get("first_name"),
            "invited_by_name": payload.get("invited_by_name"),
            "accept_url": self.accept_url(payload["invite_token"]),
            "expires_at": _format_expiry(payload.get("expires_at")),
        }

    def send_invitation_email(self, payload: Dict[str, Any]) -> str:
        context = self._context(payload)
        subject = f"You're invited to join {self.app_name}"
        text = (
            f"You have been invited to join {self.app_name} as {context['role']}.\n"
            f"Accept the invitation: {context['accept_url']}\n"
            f"This invitation expires on {context['expires_at']}."
        )
        html = self.renderer.render("invitation", context, subject=subject)
        return self.send_email(payload["email"], subject, text, html)

    def send_invitation_sms(self, payload: Dict[str, Any]) -> str:
        context = self._context(payload)
        message = (
            f"You're invited to join {self.app_name} as {context['role']}. "
            f"Accept: {context['accept_url']}"
        )
        return self.send_sms(payload["phone_number"], message)

    def send_reminder_email(self, payload: Dict[str, Any]) -> str:
        context = self._context(payload)
        subject = f"Reminder: your {self.app_name} invitation expires soon"
        text = (
            f"Your invitation to join {self.app_name} expires on {context['expires_at']}.\n"
            f"Accept it now: {context['accept_url']}"
        )
        html = self.renderer.render("reminder", context, subject=subject)
        return self.send_email(payload["email"], subject, text, html)

    def send_reminder_sms(self, payload: Dict[str, Any]) -> str:
        context = self._context(payload)
        message = (
            f"Reminder: your {self.app_name} invitation expires on {context['expires_at']}. "
            f"Accept: {context['accept_url']}"
        )
        return self.send_sms(payload["phone_number"], message)

    def close(self) -> None:
        self.email.close()
        self.sms.close()
