"""Application configuration using pydantic-settings."""

from typing import Any

from pydantic import field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from services.credential_manager import CREDENTIAL_KEYS, get_credential


class KeychainSettingsSource(PydanticBaseSettingsSource):
    """Load credential fields from the OS keychain via ``keyring``.

    Only fields whose uppercase name appears in
    :data:`~services.credential_manager.CREDENTIAL_KEYS` are looked up.
    All other fields return ``None`` so the next source in the chain
    handles them.
    """

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        env_name = field_name.upper()
        if env_name not in CREDENTIAL_KEYS:
            return None, field_name, False
        value = get_credential(env_name)
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name, field_info in self.settings_cls.model_fields.items():
            value, key, is_complex = self.get_field_value(field_info, field_name)
            if value is not None:
                d[key] = value
        return d


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            KeychainSettingsSource(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # Database
    DATABASE_URL: str = "sqlite:///./phv_banking.db"

    # Fernet key used to encrypt stored OAuth tokens and sign OAuth state
    TOKEN_ENCRYPTION_KEY: str = ""

    # DBS API credentials (optional - for DBS integration)
    DBS_CLIENT_ID: str = ""
    DBS_CLIENT_SECRET: str = ""
    DBS_API_BASE_URL: str = "https://api.dbs.com/v1"

    # OCBC API credentials (optional - for OCBC integration)
    OCBC_CLIENT_ID: str = ""
    OCBC_CLIENT_SECRET: str = ""
    OCBC_API_BASE_URL: str = "https://api.ocbc.com/v1"

    # UOB API credentials (optional - for UOB integration)
    UOB_CLIENT_ID: str = ""
    UOB_CLIENT_SECRET: str = ""
    UOB_API_BASE_URL: str = "https://api.uob.com.sg/v1"

    # Provider HTTP behaviour
    PROVIDER_HTTP_TIMEOUT: float = 30.0

    # Token lifecycle
    TOKEN_SAFETY_MARGIN_SECONDS: int = 300
    OAUTH_STATE_MAX_AGE_SECONDS: int = 600

    # Sync behaviour
    SYNC_LOOKBACK_DAYS: int = 30
    SYNC_MAX_WORKERS: int = 4
    SYNC_TIMEOUT_SECONDS: float = 120.0

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize LOG_LEVEL to an uppercase Python logging level."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"LOG_LEVEL must be one of {valid}, got {v!r}")
        return v.upper()

    @field_validator("SYNC_MAX_WORKERS")
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        """A sync needs at least one worker thread."""
        if v < 1:
            raise ValueError(f"SYNC_MAX_WORKERS must be at least 1, got {v}")
        return v

    # App settings
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"


settings = Settings()
