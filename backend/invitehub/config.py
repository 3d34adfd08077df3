"""
Application configuration
"""
from pydantic_settings import BaseSettings
from typing import Dict, List, Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "InviteHub"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    FRONTEND_BASE_URL: str = "http://localhost:3000"
    LOG_FORMAT: str = "text"
    LOG_LEVEL: str = "INFO"

    # Database (MongoDB)
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB_NAME: str = "invitehub"

    # Redis / Celery
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: Optional[str] = None
    DELIVERY_QUEUE_NAME: str = "invitations"
    DELIVERY_MAX_ATTEMPTS: int = 5
    DELIVERY_BACKOFF_SECONDS: int = 5
    DELIVERY_BACKOFF_MAX_SECONDS: int = 600
    DELIVERY_DEAD_LETTER_LIMIT: int = 10
    EXPIRY_SWEEP_INTERVAL_MINUTES: int = 15
    REMINDER_SWEEP_INTERVAL_MINUTES: int = 30

    # Invitation policy
    INVITATION_EXPIRY_DAYS: int = 7
    INVITATION_MAX_ATTEMPTS: int = 5
    REMINDER_WINDOW_HOURS: int = 3
    TOKEN_GENERATION_MAX_ATTEMPTS: int = 5
    USERNAME_MAX_ATTEMPTS: int = 100
    BCRYPT_ROUNDS: int = 12
    ALLOWED_DOMAINS: List[str] = ["all"]
    BLACKLISTED_DOMAINS: List[str] = []
    MODULES_ENABLED: Dict[str, bool] = {"invitations": True}

    # Send / resend throttling per client IP (fixed window in Redis)
    INVITE_RATE_LIMIT_MAX: int = 5
    INVITE_RATE_LIMIT_WINDOW_SECONDS: int = 900
    # Peers allowed to set X-Forwarded-For; empty means the header is ignored
    TRUSTED_PROXIES: List[str] = []

    # Notification providers
    EMAIL_PROVIDER: str = "gmail"
    BACKUP_EMAIL_PROVIDER: Optional[str] = None
    SMS_PROVIDER: str = "twilio"
    BACKUP_SMS_PROVIDER: Optional[str] = None
    NOTIFICATION_RETRIES: int = 3
    NOTIFICATION_HTTP_TIMEOUT_SECONDS: float = 10.0
    EMAIL_FROM: Optional[str] = None

    GMAIL_USER: Optional[str] = None
    GMAIL_APP_PASSWORD: Optional[str] = None
    MAILGUN_API_KEY: Optional[str] = None
    MAILGUN_DOMAIN: Optional[str] = None
    MAILGUN_API_URL: str = "https://api.mailgun.net/v3"
    SENDGRID_API_KEY: Optional[str] = None
    SENDGRID_API_URL: str = "https://api.sendgrid.com/v3/mail/send"

    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None
    VONAGE_API_KEY: Optional[str] = None
    VONAGE_API_SECRET: Optional[str] = None
    VONAGE_PHONE_NUMBER: Optional[str] = None
    PLIVO_AUTH_ID: Optional[str] = None
    PLIVO_AUTH_TOKEN: Optional[str] = None
    PLIVO_PHONE_NUMBER: Optional[str] = None

    # Geolocation
    GEOLOCATION_URL: str = "http://ip-api.com/json/{ip}"
    GEOLOCATION_TIMEOUT_SECONDS: float = 5.0

    # Error tracking (WARNING+ logs persisted to MongoDB)
    ERROR_TRACKING_ENABLED: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def broker_url(self) -> str:
        return self.CELERY_BROKER_URL or self.REDIS_URL

    def is_module_enabled(self, module: str) -> bool:
        return bool(self.MODULES_ENABLED.get(module, False))


settings = Settings()
