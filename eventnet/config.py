"""Configuration management for eventnet.

This module provides centralized configuration using Pydantic Settings,
read from environment variables and an optional ``.env`` file.

Environment Profiles:
    - DEVELOPMENT: Verbose logging, tracing off, safe defaults
    - PRODUCTION: JSON logs, tracing enabled, optimized for stability
    - TESTING: In-memory database, minimal logging, fast execution

Example:
    >>> from eventnet.config import settings, Environment
    >>> print(settings.poll_interval_seconds)
    3.0
    >>> if settings.has_backend_credentials:
    ...     print(f"Using hosted backend at {settings.backend_url}")
"""

from enum import StrEnum
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Table(StrEnum):
    """Tables of the relational store."""

    PROFILES = "profiles"
    EVENTS = "events"
    REGISTRATIONS = "event_registrations"
    CONNECTIONS = "network_connections"
    MESSAGES = "messages"


class EventType(StrEnum):
    """Kind of gathering an event is."""

    CONFERENCE = "conference"
    SEMINAR = "seminar"
    WORKSHOP = "workshop"
    WEBINAR = "webinar"
    NETWORKING = "networking"


class EventFormat(StrEnum):
    """Where an event takes place."""

    ONLINE = "online"
    OFFLINE = "offline"
    HYBRID = "hybrid"


class RegistrationStatus(StrEnum):
    """Status of a user's registration for an event."""

    REGISTERED = "registered"
    ATTENDED = "attended"
    CANCELLED = "cancelled"


class ConnectionStatus(StrEnum):
    """Stored status of a connection row."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class RelationshipState(StrEnum):
    """Relationship between two users as seen by one of them.

    Attributes:
        NONE: No connection row exists for the pair
        PENDING_OUTGOING: The viewer sent a request that is still open
        PENDING_INCOMING: The other user sent a request to the viewer
        ACCEPTED: Both users are connected
        REJECTED: A request between the pair was rejected
    """

    NONE = "none"
    PENDING_OUTGOING = "pending-outgoing"
    PENDING_INCOMING = "pending-incoming"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class Environment(StrEnum):
    """Runtime environment with specific behavior profiles.

    Attributes:
        DEVELOPMENT: Verbose logging, tracing disabled
        PRODUCTION: Conservative settings, tracing enabled, optimized for stability
        TESTING: In-memory database, minimal logging, fast execution
        STAGING: Pre-production validation environment
    """

    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"
    STAGING = "staging"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Attributes:
        backend_url: Base URL of the hosted backend (REST and auth endpoints)
        backend_anon_key: Public API key sent with every backend request
        data_dir: Base directory for local data files
        database_path: Path to the local SQLite store
        poll_interval_seconds: Interval between transcript refreshes
        request_timeout_seconds: Upper bound for a single backend request
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment Configuration
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Runtime environment (development, production, testing, staging)",
    )

    # Hosted backend
    backend_url: Optional[str] = Field(
        None,
        alias="SUPABASE_URL",
        description="Base URL of the hosted backend-as-a-service project",
    )
    backend_anon_key: Optional[str] = Field(
        None,
        alias="SUPABASE_ANON_KEY",
        description="Anonymous (public) API key of the hosted backend",
    )

    # Data Directory Configuration
    data_dir: Path = Field(
        Path("./data"),
        description="Base directory for all data files (database, logs)",
    )

    # Database Configuration
    database_path: Path = Field(
        Path("eventnet.db"),  # Will be updated to data_dir/eventnet.db by validator
        description="Path to SQLite database file (defaults to data_dir/eventnet.db)",
    )

    # Operational Parameters
    poll_interval_seconds: float = Field(
        3.0,
        ge=0.5,
        le=60.0,
        description="Seconds between transcript refreshes of the active chat",
    )
    request_timeout_seconds: float = Field(
        10.0,
        gt=0,
        le=120.0,
        description="Timeout for a single backend request",
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    log_to_file: bool = Field(
        default=False,
        description="Enable file logging in addition to console",
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format (recommended for production)",
    )

    # Observability (OpenTelemetry)
    enable_tracing: bool = Field(
        default=False,
        description="Enable OpenTelemetry distributed tracing",
    )
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OpenTelemetry OTLP endpoint for traces (e.g., http://localhost:4317)",
    )

    @field_validator("data_dir", mode="before")
    @classmethod
    def expand_data_dir(cls, v: str | Path) -> Path:
        """Expand and resolve data directory path."""
        path = Path(v).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    @field_validator("backend_url")
    @classmethod
    def strip_backend_url(cls, v: Optional[str]) -> Optional[str]:
        """Normalize the backend URL (no trailing slash, http(s) only)."""
        if v is None or not v.strip():
            return None
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("Backend URL must start with http:// or https://")
        return v

    @model_validator(mode="after")
    def set_database_path_default(self) -> "Settings":
        """Set database_path to data_dir/eventnet.db if not explicitly provided."""
        if self.database_path == Path("eventnet.db"):
            self.database_path = self.data_dir / "eventnet.db"
        if str(self.database_path) != ":memory:":
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
        return self

    @model_validator(mode="after")
    def apply_environment_profile(self) -> "Settings":
        """Apply environment-specific defaults.

        Profiles:
            - PRODUCTION: INFO logging, JSON logs, tracing enabled
            - DEVELOPMENT: DEBUG logging, human-readable logs, tracing disabled
            - TESTING: In-memory database, ERROR logging, no file logging, no tracing
            - STAGING: Production-like but never quieter than INFO

        Returns:
            Modified settings instance with environment-specific adjustments
        """
        if self.environment == Environment.PRODUCTION:
            if self.log_level == "DEBUG":
                self.log_level = "INFO"
            self.log_json = True
            self.enable_tracing = True

        elif self.environment == Environment.DEVELOPMENT:
            self.log_level = "DEBUG"
            self.log_json = False
            self.enable_tracing = False

        elif self.environment == Environment.TESTING:
            self.database_path = Path(":memory:")
            self.log_level = "ERROR"
            self.log_to_file = False
            self.log_json = False
            self.enable_tracing = False

        elif self.environment == Environment.STAGING:
            self.log_level = "INFO"
            self.log_json = True
            self.enable_tracing = True

        return self

    @property
    def database_url(self) -> str:
        """Get SQLAlchemy database URL."""
        return f"sqlite:///{self.database_path}"

    @property
    def rest_url(self) -> Optional[str]:
        """REST endpoint root of the hosted backend."""
        return f"{self.backend_url}/rest/v1" if self.backend_url else None

    @property
    def auth_url(self) -> Optional[str]:
        """Auth endpoint root of the hosted backend."""
        return f"{self.backend_url}/auth/v1" if self.backend_url else None

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    @property
    def is_staging(self) -> bool:
        """Check if running in staging environment."""
        return self.environment == Environment.STAGING

    @property
    def has_backend_credentials(self) -> bool:
        """Check if the hosted backend is fully configured."""
        return self.backend_url is not None and bool(self.backend_anon_key)

    def redact_key(self, key: Optional[str] = None) -> str:
        """Redact an API key for logging.

        Args:
            key: Key to redact (defaults to backend_anon_key)

        Returns:
            Redacted key string
        """
        key = key or self.backend_anon_key
        if not key:
            return "None"
        return f"{key[:8]}...{key[-4:]}" if len(key) > 12 else "***"


def get_settings() -> Settings:
    """Get a fresh settings instance from the current environment.

    Returns:
        Configured Settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
