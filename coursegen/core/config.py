"""Application configuration with validation."""

import os
import shlex
import socket
from enum import Enum
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class ConfigurationError(Exception):
    """Raised when application configuration is invalid for the environment."""
    pass


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class Settings(BaseSettings):
    """
    Application and worker settings with validation.

    One settings object is shared by the API process and every worker
    process. Worker-specific values (lease, polling, retry, pipeline) are
    ignored by the API.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment (development/production)"
    )

    # CORS Configuration
    cors_allowed_origins: str = Field(
        default="http://localhost:3000",
        description="Allowed CORS origins (comma-separated)"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./coursegen.db",
        description="Database connection URL"
    )
    # Connection pool tuning (PostgreSQL only; ignored for SQLite).
    db_pool_size: int = Field(
        default=5,
        description="Number of persistent database connections"
    )
    db_max_overflow: int = Field(
        default=10,
        description="Extra connections allowed during traffic bursts"
    )
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a connection from the pool before raising"
    )
    db_pool_recycle: int = Field(
        default=1800,
        description="Seconds before a connection is recycled (prevents stale connections)"
    )
    # SQLite only. Several worker processes may write the same file; a writer
    # waits this long for the lock before the store is reported unavailable.
    db_busy_timeout: float = Field(
        default=30.0,
        description="Seconds SQLite waits on a locked database"
    )

    # Worker / lease
    worker_id: str = Field(
        default_factory=_default_worker_id,
        description="Opaque identity written to locked_by when this worker claims a job"
    )
    lease_seconds: int = Field(
        default=300,
        description="Lease length granted on claim and on every renewal"
    )
    heartbeat_seconds: int = Field(
        default=60,
        description="Interval between lease renewals while a job runs (must be < lease_seconds)"
    )
    poll_interval_min: float = Field(
        default=2.0,
        description="Idle poll delay after the first empty poll"
    )
    poll_interval_max: float = Field(
        default=60.0,
        description="Upper bound for the idle poll delay"
    )
    reclaim_interval_seconds: int = Field(
        default=60,
        description="How often a worker sweeps jobs whose lease expired"
    )

    # Retry / backoff
    max_attempts_default: int = Field(
        default=3,
        description="max_attempts for jobs created without an explicit value"
    )
    retry_base_delay_seconds: float = Field(
        default=5.0,
        description="Base of the exponential retry delay (base * 2^attempts)"
    )
    retry_max_delay_seconds: float = Field(
        default=600.0,
        description="Cap on a single retry delay"
    )
    retry_jitter_seconds: float = Field(
        default=5.0,
        description="Uniform random jitter added to each retry delay (0 disables)"
    )

    # Pipeline
    analysis_tool_command: str = Field(
        default="fondation-cli",
        description="External analysis executable (shell-split; stage arguments are appended)"
    )
    stage_timeout_seconds: int = Field(
        default=1800,
        description="Maximum seconds a single pipeline stage may run"
    )
    workspace_root: str = Field(
        default="./workspaces",
        description="Directory holding one checkout + output directory per job"
    )
    keep_workspace: bool = Field(
        default=False,
        description="Keep job workspaces after the job completes or dies"
    )
    git_clone_timeout_seconds: int = Field(
        default=300,
        description="Timeout for cloning a repository"
    )
    github_token: str = Field(
        default="",
        description="Token used for cloning private repositories (optional)"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    def get_cors_origins(self) -> List[str]:
        """
        Get CORS origins as a list.

        Parses comma-separated string and validates no wildcards.
        """
        origins = [origin.strip() for origin in self.cors_allowed_origins.split(',') if origin.strip()]

        if "*" in origins:
            raise ValueError(
                "Wildcard CORS (*) not allowed. "
                "Specify explicit origins in CORS_ALLOWED_ORIGINS"
            )

        return origins

    def get_tool_command(self) -> List[str]:
        """Analysis tool command split into argv form."""
        return shlex.split(self.analysis_tool_command)

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator('lease_seconds', 'heartbeat_seconds', 'stage_timeout_seconds', 'max_attempts_default')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    def validate_production_config(self) -> None:
        """Validate configuration for the current environment.

        A heartbeat that is not shorter than the lease lets leases expire
        under a healthy worker, so it is rejected in every environment.
        Localhost CORS origins are rejected only in production.

        Raises:
            ConfigurationError: If the configuration is unusable.
        """
        if self.heartbeat_seconds >= self.lease_seconds:
            raise ConfigurationError(
                f"HEARTBEAT_SECONDS ({self.heartbeat_seconds}) must be shorter than "
                f"LEASE_SECONDS ({self.lease_seconds})"
            )

        errors: list[str] = []

        origins = self.get_cors_origins()
        localhost_origins = [o for o in origins if "localhost" in o or "127.0.0.1" in o]
        if localhost_origins:
            errors.append(
                f"CORS allows localhost origins: {localhost_origins}. "
                "Remove localhost origins for production."
            )

        if errors and self.environment == Environment.PRODUCTION:
            raise ConfigurationError(
                "Production configuration is insecure:\n  - " + "\n  - ".join(errors)
            )

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
