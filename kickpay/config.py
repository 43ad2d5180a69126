"""
kickpay Application Configuration
==================================

PURPOSE:
    Pydantic-Settings based configuration for the kickpay payments backend.
    All settings can be overridden via environment variables (KICKPAY_ prefix).

COLLABORATORS:
    gateway       - card billing provider (tokenize / charge / refund / revoke)
    accounts      - user directory + session authorization
    ride          - ride service (price reporting)
    platform      - open-API platform (payment process callbacks, discounts)
    message       - SMS / message gateway for user notifications
"""

import logging
import os
from typing import List, Literal, Optional

from cryptography.fernet import Fernet
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

_DEFAULT_GATEWAY_URL = "https://webtx.tpay.co.kr/api/v1"


def _generate_secret_key() -> str:
    """Generate a random key for billing token encryption at rest.

    WARNING: Auto-generated keys are ephemeral - they change on each restart.
    Stored billing tokens become unreadable once the process restarts.
    """
    return Fernet.generate_key().decode()


class Settings(BaseSettings):
    app_name: str = "kickpay"
    debug: bool = False
    environment: Literal["development", "stage", "production"] = "production"

    # Persistence
    data_directory: str = "/data"
    database_url: Optional[str] = None

    # Card billing gateway
    gateway_base_url: str = _DEFAULT_GATEWAY_URL
    gateway_timeout_s: float = 15.0

    # Core services
    accounts_url: Optional[str] = None
    accounts_key: Optional[str] = None       # HS256 secret for the accounts bearer token
    ride_url: Optional[str] = None
    platform_url: Optional[str] = None
    platform_access_key: Optional[str] = None
    message_gateway_url: Optional[str] = None
    message_gateway_key: Optional[str] = None
    core_timeout_s: float = 10.0

    # This service's identity (JWT issuer) and internal auth
    service_url: str = "https://payments.hikick.kr"
    internal_jwt_secret: Optional[str] = None
    internal_token_max_lifetime_h: int = 6

    # Billing token encryption at rest
    # If not set, auto-generates a key (ephemeral, see get_secret_key()).
    secret_key: Optional[str] = None
    # Previous key for dual-decrypt during rotation.
    previous_secret_key: Optional[str] = None

    # Unpaid-debt scheduler
    unpaid_scheduler_enabled: bool = True
    unpaid_scheduler_interval_s: int = 3600
    unpaid_page_size: int = 10
    dunning_message_interval_days: int = 7

    # Logging
    log_directory: str = "logs"

    # CORS
    cors_origins: List[str] = ["*"]

    class Config:
        env_file = ".env"
        env_prefix = "KICKPAY_"

    def get_database_url(self) -> str:
        """Explicit setting first, then DATABASE_URL, then SQLite under data_directory."""
        if self.database_url:
            return self.database_url
        return os.environ.get(
            "DATABASE_URL",
            f"sqlite:///{os.path.join(self.data_directory, 'kickpay.db')}",
        )

    def get_secret_key(self) -> str:
        """Return the SECRET_KEY, auto-generating if not set."""
        if self.secret_key:
            return self.secret_key

        logger.warning(
            "SECRET_KEY not set - auto-generating ephemeral key. "
            "Stored billing tokens will be UNREADABLE after restart. "
            "Set KICKPAY_SECRET_KEY in production."
        )
        self.secret_key = _generate_secret_key()
        return self.secret_key


settings = Settings()
