"""Application settings loaded from environment variables.

Environment Configuration:
    LINKRANGER_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: Database connection string (required)
    REDIS_URL: Redis connection string (optional; rate limiting fails open without it)

Auth Configuration (required in all environments):
    SUPABASE_JWKS_URL: Full URL to Supabase JWKS endpoint
    SUPABASE_ISSUER: Expected JWT issuer (trailing slash stripped)
    SUPABASE_AUDIENCES: Comma-separated list of allowed audiences

Tag Generation:
    GEMINI_API_KEY: Platform key for the Gemini generateContent API
    GEMINI_MODEL: Model used for tag and entity extraction
    FETCH_TIMEOUT_S / METADATA_FETCH_TIMEOUT_S: Page fetch timeouts
    TAG_CACHE_TTL_DAYS: Freshness window for cached tag lists

Apple Server Notifications:
    APPLE_JWKS_URL: JWKS used to verify Production signed payloads
    APPLE_VERIFY_SANDBOX: Also verify Sandbox payload signatures
    APPLE_PRODUCT_*: Product identifiers mapped to plans
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL is always required
    - SUPABASE_JWKS_URL, SUPABASE_ISSUER, SUPABASE_AUDIENCES are required in all environments
    - GEMINI_API_KEY is required in staging and prod when Gemini is enabled
    """

    linkranger_env: Environment = Field(default=Environment.LOCAL, alias="LINKRANGER_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]

    # Redis (rate limiting)
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    rate_limit_rpm: int = Field(default=20, alias="RATE_LIMIT_RPM")

    # Supabase auth settings (required in all environments)
    supabase_jwks_url: str | None = Field(default=None, alias="SUPABASE_JWKS_URL")
    supabase_issuer: str | None = Field(default=None, alias="SUPABASE_ISSUER")
    supabase_audiences: str | None = Field(default=None, alias="SUPABASE_AUDIENCES")

    # Test auth settings (optional, with defaults)
    test_token_issuer: str = Field(default="test-issuer", alias="TEST_TOKEN_ISSUER")
    test_token_audiences: str = Field(default="test-audience", alias="TEST_TOKEN_AUDIENCES")

    # Gemini
    enable_gemini: bool = Field(default=True, alias="ENABLE_GEMINI")
    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.0-flash", alias="GEMINI_MODEL")
    gemini_analysis_model: str = Field(default="gemini-2.0-flash", alias="GEMINI_ANALYSIS_MODEL")
    llm_timeout_s: int = Field(default=30, alias="LLM_TIMEOUT_S")
    analysis_timeout_s: int = Field(default=110, alias="ANALYSIS_TIMEOUT_S")

    # Page fetching
    fetch_timeout_s: float = Field(default=10.0, alias="FETCH_TIMEOUT_S")
    metadata_fetch_timeout_s: float = Field(default=15.0, alias="METADATA_FETCH_TIMEOUT_S")
    fetch_max_redirects: int = Field(default=5, alias="FETCH_MAX_REDIRECTS")
    fetch_max_bytes: int = Field(default=5 * 1024 * 1024, alias="FETCH_MAX_BYTES")  # 5 MB

    # Tag cache
    tag_cache_ttl_days: int = Field(default=7, alias="TAG_CACHE_TTL_DAYS")

    # Admin
    developer_emails: str = Field(default="", alias="DEVELOPER_EMAILS")

    # Apple App Store server notifications
    apple_jwks_url: str = Field(default="https://appleid.apple.com/auth/keys", alias="APPLE_JWKS_URL")
    apple_verify_sandbox: bool = Field(default=False, alias="APPLE_VERIFY_SANDBOX")
    apple_webhook_max_bytes: int = Field(default=1024 * 1024, alias="APPLE_WEBHOOK_MAX_BYTES")
    apple_product_plus_monthly: str = Field(
        default="com.tat22444.wink.plus.monthly", alias="APPLE_PRODUCT_PLUS_MONTHLY"
    )
    apple_product_plus_yearly: str = Field(
        default="com.tat22444.wink.plus.yearly", alias="APPLE_PRODUCT_PLUS_YEARLY"
    )
    apple_product_pro_monthly: str = Field(
        default="com.tat22444.wink.pro.monthly", alias="APPLE_PRODUCT_PRO_MONTHLY"
    )
    apple_product_pro_yearly: str = Field(
        default="com.tat22444.wink.pro.yearly", alias="APPLE_PRODUCT_PRO_YEARLY"
    )
    apple_product_free: str = Field(default="com.tat22444.wink.free", alias="APPLE_PRODUCT_FREE")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for all environments."""
        missing_auth = []
        if not self.supabase_jwks_url:
            missing_auth.append("SUPABASE_JWKS_URL")
        if not self.supabase_issuer:
            missing_auth.append("SUPABASE_ISSUER")
        if not self.supabase_audiences:
            missing_auth.append("SUPABASE_AUDIENCES")

        if missing_auth:
            raise ValueError(
                f"Missing required Supabase auth settings: {', '.join(missing_auth)}. "
                "Set these environment variables or add them to .env."
            )

        if self.is_deployed and self.enable_gemini and not self.gemini_api_key:
            raise ValueError(
                f"GEMINI_API_KEY is required for LINKRANGER_ENV={self.linkranger_env.value}"
            )

        return self

    @property
    def is_deployed(self) -> bool:
        """Whether this is a staging or production deployment."""
        return self.linkranger_env in (Environment.STAGING, Environment.PROD)

    @property
    def audience_list(self) -> list[str]:
        """Parse comma-separated audiences into a list."""
        if self.supabase_audiences:
            return [a.strip() for a in self.supabase_audiences.split(",") if a.strip()]
        return []

    @property
    def normalized_issuer(self) -> str | None:
        """Return issuer with trailing slash stripped."""
        if self.supabase_issuer:
            return self.supabase_issuer.rstrip("/")
        return None

    @property
    def developer_email_list(self) -> list[str]:
        """Parse comma-separated developer e-mails (case preserved, whitespace stripped)."""
        return [e.strip() for e in self.developer_emails.split(",") if e.strip()]

    @property
    def apple_product_plans(self) -> dict[str, str]:
        """Configured App Store product id -> plan mapping."""
        return {
            self.apple_product_plus_monthly: "plus",
            self.apple_product_plus_yearly: "plus",
            self.apple_product_pro_monthly: "plus",
            self.apple_product_pro_yearly: "plus",
            self.apple_product_free: "free",
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
