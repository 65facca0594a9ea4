from typing import Optional
from urllib.parse import quote_plus

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseSettings):
    """Database configuration"""

    host: str = "localhost"
    port: int = 5432
    username: str = "postgres"
    password: SecretStr = Field(default=SecretStr("postgres"))
    database: str = "project_portal"
    db_schema: Optional[str] = Field(default=None, validation_alias="DB_SCHEMA")
    url_override: Optional[str] = Field(
        default=None,
        validation_alias="DB_URL",
        description="Full SQLAlchemy URL; takes precedence over the discrete fields.",
    )
    serverless: bool = Field(
        default=True,
        description="If true, disable connection pooling so serverless DBs can pause.",
    )

    @property
    def url(self) -> str:
        """Get database URL"""
        if self.url_override:
            return self.url_override
        username = quote_plus(self.username)
        password = quote_plus(self.password.get_secret_value())
        return (
            "postgresql+asyncpg://"
            f"{username}:{password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class SecurityConfig(BaseSettings):
    """JWT verification settings for the upstream identity layer."""

    jwt_secret_key: SecretStr = Field(
        default=SecretStr("change-me"),
        validation_alias="JWT_SECRET",
    )
    jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
    access_token_expires_minutes: int = Field(
        default=60,
        validation_alias="JWT_EXPIRATION_MINUTES",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class AllocationConfig(BaseSettings):
    """Limits governing group formation and project allocation."""

    max_group_size: int = Field(default=4, ge=1)
    min_complete_size: int = Field(default=2, ge=1)
    max_project_choices: int = Field(default=3, ge=1)
    group_code_length: int = Field(default=6, ge=4, le=12)
    # A-Z and 2-9 without the look-alikes O/0, I/1 and S/5.
    group_code_alphabet: str = "ABCDEFGHJKLMNPQRTUVWXYZ2346789"
    group_code_max_attempts: int = Field(default=10, ge=1)
    auto_rejection_reason: str = "Student/group accepted to another project"
    specialization_required_from_semester: int = 6

    @model_validator(mode="after")
    def _check_limits(self) -> "AllocationConfig":
        if self.min_complete_size > self.max_group_size:
            raise ValueError("min_complete_size cannot exceed max_group_size")
        lookalikes = set("O0I1S5") & set(self.group_code_alphabet)
        if lookalikes:
            raise ValueError(
                f"group_code_alphabet must not contain {sorted(lookalikes)}"
            )
        if len(set(self.group_code_alphabet)) != len(self.group_code_alphabet):
            raise ValueError("group_code_alphabet must not repeat characters")
        return self

    model_config = SettingsConfigDict(
        env_prefix="ALLOCATION_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class NotificationConfig(BaseSettings):
    """Notification transport configuration."""

    backend: str = Field(
        default="log",
        description="Either 'log' (write to the application log) or 'rabbitmq'.",
    )
    rabbitmq_host: str = "localhost"
    rabbitmq_port: int = 5672
    rabbitmq_username: str = "guest"
    rabbitmq_password: SecretStr = Field(default=SecretStr("guest"))
    rabbitmq_queue: str = "portal.notifications"

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(BaseSettings):
    """Application settings"""

    app_name: str = "Project Allocation Portal"
    app_version: str = "1.0.0"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_file: str = "logs/app.log"

    # Database
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Security
    security: SecurityConfig = Field(default_factory=SecurityConfig)

    # Allocation rules
    allocation: AllocationConfig = Field(default_factory=AllocationConfig)

    # Notifications
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
