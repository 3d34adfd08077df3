"""
Notification providers - one class per vendor.

E-mail:
- gmail: SMTP with an App Password (smtp.gmail.com:587, STARTTLS)
- mailgun: REST API, HTTP basic auth with "api" + API key
- sendgrid: REST API v3, bearer token

SMS:
- twilio: REST API, account SID + auth token
- vonage: SMS REST API, api key + secret in the form body
- plivo: REST API, auth id + auth token

Every provider exposes send(target, content) and raises ProviderError on any
failure. Retries and fail-over are the dispatcher's job, not the provider's.
"""

import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, Optional, Type

import httpx

from invitehub.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

EMAIL_CHANNEL = "email"
SMS_CHANNEL = "sms"


class ProviderError(Exception):
    """A single send attempt failed."""


class ProviderConfigurationError(ProviderError):
    """Raised when required provider credentials are missing."""


@dataclass(frozen=True)
class EmailContent:
    subject: str
    text: str
    html: Optional[str] = None


def _require(value: Optional[str], name: str, provider: str) -> str:
    if not value:
        raise ProviderConfigurationError(f"{provider}: {name} is not configured")
    return value


class NotificationProvider:
    """Base class for all providers."""

    name: str = ""
    channel: str = ""

    def send(self, target: str, content: Any) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class HttpProvider(NotificationProvider):
    """Provider backed by a vendor REST API."""

    def __init__(self, client: Optional[httpx.Client] = None, timeout: float = 10.0):
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)

    def _post(self, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self.client.post(url, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.name}: request failed: {e}") from e
        if response.status_code >= 400:
            raise ProviderError(
                f"{self.name}: HTTP {response.status_code}: {response.text[:200]}"
            )
        return response

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


# =============================================================================
# E-mail providers
# =============================================================================


class GmailSmtpProvider(NotificationProvider):
    name = "gmail"
    channel = EMAIL_CHANNEL

    SMTP_HOST = "smtp.gmail.com"
    SMTP_PORT = 587

    def __init__(self, user: str, app_password: str, sender: Optional[str] = None, timeout: float = 10.0):
        self.user = user
        self.app_password = app_password
        self.sender = sender or user
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.Client] = None):
        return cls(
            user=_require(settings.GMAIL_USER, "GMAIL_USER", cls.name),
            app_password=_require(settings.GMAIL_APP_PASSWORD, "GMAIL_APP_PASSWORD", cls.name),
            sender=settings.EMAIL_FROM,
            timeout=settings.NOTIFICATION_HTTP_TIMEOUT_SECONDS,
        )

    def send(self, target: str, content: EmailContent) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = content.subject
        msg["From"] = self.sender
        msg["To"] = target

        msg.attach(MIMEText(content.text, "plain", "utf-8"))
        if content.html:
            msg.attach(MIMEText(content.html, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.SMTP_HOST, self.SMTP_PORT, timeout=self.timeout) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(self.user, self.app_password)
                server.sendmail(self.sender, [target], msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            raise ProviderError(
                f"gmail: authentication failed, make sure an App Password is used: {e}"
            ) from e
        except (smtplib.SMTPException, OSError) as e:
            raise ProviderError(f"gmail: {e}") from e


class MailgunProvider(HttpProvider):
    name = "mailgun"
    channel = EMAIL_CHANNEL

    def __init__(self, api_key: str, domain: str, sender: str, api_url: str, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.domain = domain
        self.sender = sender
        self.api_url = api_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.Client] = None):
        domain = _require(settings.MAILGUN_DOMAIN, "MAILGUN_DOMAIN", cls.name)
        return cls(
            api_key=_require(settings.MAILGUN_API_KEY, "MAILGUN_API_KEY", cls.name),
            domain=domain,
            sender=settings.EMAIL_FROM or f"{settings.APP_NAME} <noreply@{domain}>",
            api_url=settings.MAILGUN_API_URL,
            client=client,
            timeout=settings.NOTIFICATION_HTTP_TIMEOUT_SECONDS,
        )

    def send(self, target: str, content: EmailContent) -> None:
        data = {
            "from": self.sender,
            "to": target,
            "subject": content.subject,
            "text": content.text,
        }
        if content.html:
            data["html"] = content.html
        self._post(f"{self.api_url}/{self.domain}/messages", auth=("api", self.api_key), data=data)


class SendgridProvider(HttpProvider):
    name = "sendgrid"
    channel = EMAIL_CHANNEL

    def __init__(self, api_key: str, sender: str, api_url: str, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.sender = sender
        self.api_url = api_url

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.Client] = None):
        return cls(
            api_key=_require(settings.SENDGRID_API_KEY, "SENDGRID_API_KEY", cls.name),
            sender=_require(settings.EMAIL_FROM, "EMAIL_FROM", cls.name),
            api_url=settings.SENDGRID_API_URL,
            client=client,
            timeout=settings.NOTIFICATION_HTTP_TIMEOUT_SECONDS,
        )

    def send(self, target: str, content: EmailContent) -> None:
        body = [{"type": "text/plain", "value": content.text}]
        if content.html:
            body.append({"type": "text/html", "value": content.html})
        self._post(
            self.api_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "personalizations": [{"to": [{"email": target}]}],
                "from": {"email": self.sender},
                "subject": content.subject,
                "content": body,
            },
        )


# =============================================================================
# SMS providers
# =============================================================================


class TwilioProvider(HttpProvider):
    name = "twilio"
    channel = SMS_CHANNEL

    API_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

    def __init__(self, account_sid: str, auth_token: str, sender: str, **kwargs):
        super().__init__(**kwargs)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.sender = sender

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.Client] = None):
        return cls(
            account_sid=_require(settings.TWILIO_ACCOUNT_SID, "TWILIO_ACCOUNT_SID", cls.name),
            auth_token=_require(settings.TWILIO_AUTH_TOKEN, "TWILIO_AUTH_TOKEN", cls.name),
            sender=_require(settings.TWILIO_PHONE_NUMBER, "TWILIO_PHONE_NUMBER", cls.name),
            client=client,
            timeout=settings.NOTIFICATION_HTTP_TIMEOUT_SECONDS,
        )

    def send(self, target: str, content: str) -> None:
        self._post(
            self.API_URL.format(sid=self.account_sid),
            auth=(self.account_sid, self.auth_token),
            data={"To": target, "From": self.sender, "Body": content},
        )


class VonageProvider(HttpProvider):
    name = "vonage"
    channel = SMS_CHANNEL

    API_URL = "https://rest.nexmo.com/sms/json"

    def __init__(self, api_key: str, api_secret: str, sender: str, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.api_secret = api_secret
        self.sender = sender

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.Client] = None):
        return cls(
            api_key=_require(settings.VONAGE_API_KEY, "VONAGE_API_KEY", cls.name),
            api_secret=_require(settings.VONAGE_API_SECRET, "VONAGE_API_SECRET", cls.name),
            sender=_require(settings.VONAGE_PHONE_NUMBER, "VONAGE_PHONE_NUMBER", cls.name),
            client=client,
            timeout=settings.NOTIFICATION_HTTP_TIMEOUT_SECONDS,
        )

    def send(self, target: str, content: str) -> None:
        response = self._post(
            self.API_URL,
            data={
                "api_key": self.api_key,
                "api_secret": self.api_secret,
                "from": self.sender,
                "to": target.lstrip("+"),
                "text": content,
            },
        )
        # Vonage answers 200 even on rejection; status "0" means accepted
        messages = response.json().get("messages") or [{}]
        if str(messages[0].get("status")) != "0":
            raise ProviderError(
                f"vonage: rejected: {messages[0].get('error-text', 'unknown error')}"
            )


class PlivoProvider(HttpProvider):
    name = "plivo"
    channel = SMS_CHANNEL

    API_URL = "https://api.plivo.com/v1/Account/{auth_id}/Message/"

    def __init__(self, auth_id: str, auth_token: str, sender: str, **kwargs):
        super().__init__(**kwargs)
        self.auth_id = auth_id
        self.auth_token = auth_token
        self.sender = sender

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.Client] = None):
        return cls(
            auth_id=_require(settings.PLIVO_AUTH_ID, "PLIVO_AUTH_ID", cls.name),
            auth_token=_require(settings.PLIVO_AUTH_TOKEN, "PLIVO_AUTH_TOKEN", cls.name),
            sender=_require(settings.PLIVO_PHONE_NUMBER, "PLIVO_PHONE_NUMBER", cls.name),
            client=client,
            timeout=settings.NOTIFICATION_HTTP_TIMEOUT_SECONDS,
        )

    def send(self, target: str, content: str) -> None:
        self._post(
            self.API_URL.format(auth_id=self.auth_id),
            auth=(self.auth_id, self.auth_token),
            json={"src": self.sender, "dst": target, "text": content},
        )


# =============================================================================
# Factory
# =============================================================================

PROVIDERS: Dict[str, Dict[str, Type[NotificationProvider]]] = {
    EMAIL_CHANNEL: {
        GmailSmtpProvider.name: GmailSmtpProvider,
        MailgunProvider.name: MailgunProvider,
        SendgridProvider.name: SendgridProvider,
    },
    SMS_CHANNEL: {
        TwilioProvider.name: TwilioProvider,
        VonageProvider.name: VonageProvider,
        PlivoProvider.name: PlivoProvider,
        # Vonage was formerly Nexmo
        "nexmo": VonageProvider,
    },
}

ProviderFactory = Callable[[str], NotificationProvider]


def resolve_provider_class(channel: str, name: str) -> Type[NotificationProvider]:
    """
    Map a configured provider name to its class.

    Raises:
        ValueError: if the channel or provider name is unknown
    """
    registry = PROVIDERS.get(channel)
    if registry is None:
        raise ValueError(f"Unknown notification channel: {channel}")
    provider_class = registry.get(name.strip().lower())
    if provider_class is None:
        raise ValueError(
            f"Unknown {channel} provider '{name}'. Expected one of: {', '.join(sorted(registry))}"
        )
    return provider_class


def settings_provider_factory(
    channel: str,
    settings: Optional[Settings] = None,
    client: Optional[httpx.Client] = None,
) -> ProviderFactory:
    """Build providers for a channel from application settings."""
    settings = settings or default_settings

    def build(name: str) -> NotificationProvider:
        provider_class = resolve_provider_class(channel, name)
        logger.info(f"Initializing {channel} provider: {provider_class.name}")
        return provider_class.from_settings(settings, client=client)

    return build
