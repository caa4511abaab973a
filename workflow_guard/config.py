"""Configuration management for the workflow guard."""

import os
from pathlib import Path
from typing import List, Mapping, Optional
from pydantic import BaseModel, Field, field_validator
from enum import Enum


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


ENV_PREFIX = "WORKFLOW_GUARD_"

DEFAULT_ALLOWED_DOMAINS = [
    "api.openrouter.ai",
    "api.openai.com",
    "localhost",
    "127.0.0.1",
]


class AppConfig(BaseModel):
    """Application configuration settings."""

    # Application settings
    app_name: str = Field(default="Workflow Guard", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Database settings
    database_url: str = Field(
        default="sqlite:///./workflow_guard.db",
        description="Database connection URL for the SQL persistence backend"
    )
    database_echo: bool = Field(default=False, description="Enable SQLAlchemy query logging")

    # Security scanner settings
    allowed_domains: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_DOMAINS),
        description="Hostnames generated code may call without a warning"
    )
    max_prompt_length: int = Field(
        default=50000,
        description="Prompt inputs longer than this are truncated before scanning"
    )
    max_code_length: int = Field(
        default=200000,
        description="Generated code longer than this is flagged instead of scanned"
    )

    # Version store settings
    max_versions: int = Field(
        default=50,
        description="Version count above which old versions are auto-archived"
    )
    archive_keep: int = Field(
        default=20,
        description="Number of most recent versions kept out of the archive"
    )
    rollback_warning_distance: int = Field(
        default=5,
        description="Rollbacks further back than this many versions produce a warning"
    )

    # Audit log settings
    audit_max_events: int = Field(
        default=10000,
        description="Capacity of the in-memory audit log"
    )

    # Auto-healing settings
    max_heal_iterations: int = Field(
        default=3,
        description="Maximum validate/heal passes for caller-driven convergence"
    )

    # Logging settings
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s%(context_suffix)s",
        description="Log message format"
    )
    log_file: Optional[str] = Field(default=None, description="Log file path")
    log_structured: bool = Field(default=False, description="Emit JSON log lines")
    log_max_size: int = Field(default=10485760, description="Maximum log file size in bytes")  # 10MB
    log_backup_count: int = Field(default=5, description="Number of log backup files to keep")

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if not v:
            raise ValueError("Database URL cannot be empty")

        supported_schemes = ['sqlite', 'postgresql', 'mysql']
        scheme = v.split('://')[0].split('+')[0].lower()

        if scheme not in supported_schemes:
            raise ValueError(f"Unsupported database scheme: {scheme}. Supported: {supported_schemes}")

        return v

    @field_validator('allowed_domains')
    @classmethod
    def normalize_domains(cls, v):
        """Lower-case domains and drop empty entries."""
        return [domain.strip().lower() for domain in v if domain and domain.strip()]

    @field_validator('max_prompt_length', 'max_code_length', 'audit_max_events', 'max_heal_iterations')
    @classmethod
    def validate_positive(cls, v):
        """Validate limits are positive."""
        if v < 1:
            raise ValueError("Limit must be at least 1")
        return v

    @field_validator('archive_keep')
    @classmethod
    def validate_archive_keep(cls, v):
        """Validate the number of retained versions."""
        if v < 1:
            raise ValueError("At least one version must be kept out of the archive")
        return v

    @property
    def is_sqlite(self) -> bool:
        """Check if using SQLite database."""
        return self.database_url.split('://')[0].lower().startswith('sqlite')

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'AppConfig':
        """
        Create configuration from ``WORKFLOW_GUARD_*`` environment variables.

        Each field reads the upper-cased variable of the same name, for example
        ``WORKFLOW_GUARD_MAX_VERSIONS``. Values are coerced by the field types;
        ``ALLOWED_DOMAINS`` is comma separated. Unset variables keep defaults.
        """
        environ = os.environ if environ is None else environ
        values = {}
        for name, field in cls.model_fields.items():
            raw = environ.get(ENV_PREFIX + name.upper())
            if raw is None:
                continue
            if field.annotation == List[str]:
                values[name] = raw.split(',')
            elif field.annotation is LogLevel:
                values[name] = raw.strip().upper()
            else:
                values[name] = raw
        return cls(**values)


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def load_config(config_file: Optional[str] = None) -> AppConfig:
    """Load configuration from a .env file or environment variables."""
    global _config

    if config_file and os.path.exists(config_file):
        from dotenv import load_dotenv
        load_dotenv(config_file)
    elif os.path.exists('.env'):
        from dotenv import load_dotenv
        load_dotenv('.env')

    _config = AppConfig.from_env()

    return _config


def reset_config():
    """Reset the global configuration instance (mainly for testing)."""
    global _config
    _config = None


def validate_config(config: AppConfig) -> None:
    """
    Validate cross-field configuration settings.

    Raises:
        ConfigurationError: Listing every problem found; config_key names the first
    """
    errors = []
    keys = []

    if config.archive_keep > config.max_versions:
        errors.append(
            f"archive_keep ({config.archive_keep}) cannot exceed max_versions ({config.max_versions})"
        )
        keys.append("archive_keep")

    if config.rollback_warning_distance < 0:
        errors.append("rollback_warning_distance cannot be negative")
        keys.append("rollback_warning_distance")

    if config.log_file:
        log_dir = Path(config.log_file).parent
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            errors.append(f"Cannot create log directory {log_dir}: {e}")
            keys.append("log_file")

    if errors:
        # Imported here: the core package imports this module at load time
        from .core.exceptions import ConfigurationError
        raise ConfigurationError(
            f"Configuration validation failed: {'; '.join(errors)}",
            config_key=keys[0],
        )


def get_development_config() -> AppConfig:
    """Get development configuration."""
    return AppConfig(
        debug=True,
        log_level=LogLevel.DEBUG,
        database_echo=True,
    )


def get_testing_config() -> AppConfig:
    """Get testing configuration."""
    return AppConfig(
        debug=True,
        database_url="sqlite:///:memory:",
        log_level=LogLevel.WARNING,
        audit_max_events=1000,
    )
