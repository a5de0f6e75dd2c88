"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Starknet felt252 prime: 2^251 + 17 * 2^192 + 1
FELT252_PRIME = 0x800000000000011000000000000000000000000000000000000000000000001


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LedgerMode(str, Enum):
    """Ledger operation mode."""

    MOCK = "mock"
    TESTNET = "testnet"
    MAINNET = "mainnet"


class PayloadStoreMode(str, Enum):
    """Where sealed identity payloads are stored."""

    MEMORY = "memory"
    IPFS = "ipfs"


class DatabaseSettings(BaseSettings):
    """Relational store configuration (Postgres in deployment, sqlite in tests)."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = ""
    host: str = "localhost"
    port: int = 5432
    user: str = "veilcredit"
    password: SecretStr = SecretStr("veilcredit_dev_password")
    db: str = "veilcredit"
    echo: bool = False

    @property
    def async_url(self) -> str:
        """Generate async SQLAlchemy connection URL."""
        if self.url:
            return self.url
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}"

    @property
    def is_sqlite(self) -> bool:
        """Check whether the configured URL targets sqlite."""
        return self.async_url.startswith("sqlite")


class LedgerSettings(BaseSettings):
    """Ledger integration configuration."""

    model_config = SettingsConfigDict(env_prefix="LEDGER_")

    mode: LedgerMode = LedgerMode.MOCK
    rpc_url: str = ""
    contract_address: str = ""
    timeout_seconds: float = 10.0
    max_retries: int = 3


class FieldSettings(BaseSettings):
    """Scalar field used for every commitment."""

    model_config = SettingsConfigDict(env_prefix="FIELD_")

    modulus: int = FELT252_PRIME
    min_entropy_bits: int = 128


class EscrowSettings(BaseSettings):
    """Identity escrow defaults."""

    model_config = SettingsConfigDict(env_prefix="ESCROW_")

    default_threshold: int = 2
    default_trustees: str = "trustee_1,trustee_2,trustee_3"
    allow_identity_refresh: bool = False

    @property
    def default_trustee_list(self) -> list[str]:
        """Parse default trustees into a list."""
        return [t.strip() for t in self.default_trustees.split(",") if t.strip()]


class TrusteeSettings(BaseSettings):
    """Trustee channel configuration."""

    model_config = SettingsConfigDict(env_prefix="TRUSTEE_")

    # Comma separated "trustee_id=https://host" pairs; empty means in-memory channel
    endpoints: str = ""
    timeout_seconds: float = 10.0
    auth_token: SecretStr = SecretStr("")

    @property
    def endpoint_map(self) -> dict[str, str]:
        """Parse endpoints into a trustee_id -> base URL mapping."""
        result: dict[str, str] = {}
        for pair in self.endpoints.split(","):
            if "=" not in pair:
                continue
            trustee_id, url = pair.split("=", 1)
            result[trustee_id.strip()] = url.strip().rstrip("/")
        return result


class PayloadStoreSettings(BaseSettings):
    """Content-addressed payload storage configuration."""

    model_config = SettingsConfigDict(env_prefix="PAYLOAD_STORE_")

    mode: PayloadStoreMode = PayloadStoreMode.MEMORY
    api_url: str = "http://localhost:5001"
    gateway_url: str = "https://gateway.pinata.cloud/ipfs/"
    timeout_seconds: float = 30.0


class DiscoverySettings(BaseSettings):
    """Commitment discovery scan bounds."""

    model_config = SettingsConfigDict(env_prefix="DISCOVERY_")

    negative_cache_ttl_seconds: int = 60
    max_scan: int = 10_000
    recent_loans_page_size: int = 50
    concurrency: int = 16


class SchedulerSettings(BaseSettings):
    """Dispute window scheduler configuration."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    enabled: bool = True
    poll_interval_seconds: float = 5.0
    dispute_window_seconds: int = 604800  # 7 days


class EventWatcherSettings(BaseSettings):
    """Ledger event watcher configuration."""

    model_config = SettingsConfigDict(env_prefix="EVENT_WATCHER_")

    enabled: bool = True
    poll_interval_seconds: float = 15.0


class CORSSettings(BaseSettings):
    """CORS configuration."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    origins: str = "http://localhost:3000,http://localhost:5173"
    allow_credentials: bool = True

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into list."""
        return [o.strip() for o in self.origins.split(",") if o.strip()]


class ServicePorts(BaseSettings):
    """Service port configuration."""

    escrow: int = Field(default=8010, alias="ESCROW_PORT")


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.INFO

    # Project paths
    project_root: Path = Field(default_factory=lambda: Path(__file__).parent.parent.parent)

    # Service ports
    ports: ServicePorts = Field(default_factory=ServicePorts)

    # Storage
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    payload_store: PayloadStoreSettings = Field(default_factory=PayloadStoreSettings)

    # External collaborators
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    trustees: TrusteeSettings = Field(default_factory=TrusteeSettings)

    # Core behaviour
    field: FieldSettings = Field(default_factory=FieldSettings)
    escrow: EscrowSettings = Field(default_factory=EscrowSettings)
    discovery: DiscoverySettings = Field(default_factory=DiscoverySettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    event_watcher: EventWatcherSettings = Field(default_factory=EventWatcherSettings)

    # Security
    cors: CORSSettings = Field(default_factory=CORSSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
