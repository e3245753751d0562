"""Configuration settings for the billflow backend.

Wraps environment variables and provides defaults.
"""

import logging
from typing import Optional

from pydantic import ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pydantic settings class.

    Attributes:
    ----------
        PROJECT_NAME (str): The name of the project.
        API_V1_STR (str): Prefix of the versioned REST API.
        LOCAL_DEVELOPMENT (bool): Whether the application is running locally.
        LOG_LEVEL (str): The logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        SQLALCHEMY_ASYNC_DATABASE_URI (str): The SQLAlchemy async database URI.
        DB_ECHO (bool): Whether SQLAlchemy echoes statements.
        STRIPE_ENABLED (bool): Whether the payment gateway is configured.
        STRIPE_SECRET_KEY (Optional[str]): The Stripe secret API key.
        STRIPE_WEBHOOK_SECRET (str): Signing secret for Stripe webhook deliveries.
        STRIPE_WEBHOOK_TOLERANCE (int): Allowed age in seconds of a signed Stripe payload.
        RAMP_ENABLED (bool): Whether the ledger gateway is configured.
        RAMP_CLIENT_ID (Optional[str]): OAuth2 client id for Ramp.
        RAMP_CLIENT_SECRET (Optional[str]): OAuth2 client secret for Ramp.
        RAMP_API_BASE_URL (str): Base URL of the Ramp developer API.
        RAMP_TOKEN_URL (str): OAuth2 token endpoint for Ramp.
        RAMP_SCOPES (str): Space separated OAuth2 scopes requested for Ramp.
        RAMP_WEBHOOK_SECRET (str): HMAC secret for Ramp webhook deliveries.
        RAMP_HTTP_TIMEOUT (float): Timeout in seconds for Ramp HTTP calls.
        DEFAULT_CURRENCY (str): ISO currency used when none is given.
        INVOICE_DAYS_UNTIL_DUE (int): Days between invoice creation and its due date.
        CHURN_WINDOW_DAYS (int): Look-back window for churn rate.
        SYNC_PAGE_SIZE (int): Page size requested from the ledger gateway.
        SYNC_MAX_RETRIES (int): Attempts made for a single transaction page fetch.
        SYNC_RETRY_DELAY_SECONDS (float): Base delay of the linear retry backoff.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "billflow"
    API_V1_STR: str = "/api/v1"
    LOCAL_DEVELOPMENT: bool = False

    # Logging configuration
    LOG_LEVEL: str = "INFO"

    SQLALCHEMY_ASYNC_DATABASE_URI: str = "sqlite+aiosqlite:///./billflow.db"
    DB_ECHO: bool = False

    # Stripe configuration
    STRIPE_ENABLED: bool = False
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_WEBHOOK_TOLERANCE: int = 300

    # Ramp configuration
    RAMP_ENABLED: bool = False
    RAMP_CLIENT_ID: Optional[str] = None
    RAMP_CLIENT_SECRET: Optional[str] = None
    RAMP_API_BASE_URL: str = "https://api.ramp.com/developer/v1"
    RAMP_TOKEN_URL: str = "https://api.ramp.com/developer/v1/token"
    RAMP_SCOPES: str = (
        "business:read users:read users:write cards:read cards:write "
        "transactions:read reimbursements:read bills:read vendors:read "
        "departments:read locations:read"
    )
    RAMP_WEBHOOK_SECRET: str = ""
    RAMP_HTTP_TIMEOUT: float = 30.0

    # Billing
    DEFAULT_CURRENCY: str = "USD"
    INVOICE_DAYS_UNTIL_DUE: int = 30
    CHURN_WINDOW_DAYS: int = 30

    # Ledger sync
    SYNC_PAGE_SIZE: int = 100
    SYNC_MAX_RETRIES: int = 3
    SYNC_RETRY_DELAY_SECONDS: float = 1.0

    @field_validator("LOG_LEVEL", mode="before")
    def validate_log_level(cls, v: str) -> str:
        """Normalize the log level and reject unknown names.

        Args:
            v: The raw log level.

        Returns:
            str: The upper-cased log level.
        """
        level = str(v).upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown LOG_LEVEL: {v}")
        return level

    @field_validator("DEFAULT_CURRENCY", mode="before")
    def validate_currency(cls, v: str) -> str:
        """Currencies are kept as upper-case ISO codes."""
        return str(v).upper()

    @field_validator("STRIPE_SECRET_KEY", mode="before")
    def validate_stripe_settings(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        """Validate Stripe settings when STRIPE_ENABLED is True.

        Args:
        ----
            v (Optional[str]): The Stripe secret key.
            info (ValidationInfo): The validation context containing all field values.

        Returns:
        -------
            Optional[str]: The validated key.

        Raises:
        ------
            ValueError: If STRIPE_ENABLED is True and the key is empty.
        """
        if info.data.get("STRIPE_ENABLED", False) and not v:
            raise ValueError("STRIPE_SECRET_KEY must be set when STRIPE_ENABLED is True")
        return v

    @field_validator("RAMP_CLIENT_SECRET", mode="before")
    def validate_ramp_settings(cls, v: Optional[str], info: ValidationInfo) -> Optional[str]:
        """Both client credentials are required once Ramp is enabled."""
        if info.data.get("RAMP_ENABLED", False) and not (v and info.data.get("RAMP_CLIENT_ID")):
            raise ValueError(
                "RAMP_CLIENT_ID and RAMP_CLIENT_SECRET must be set when RAMP_ENABLED is True"
            )
        return v


settings = Settings()
