"""
GitLab Backup - Configuration Module

Provides type-safe configuration using Pydantic Settings.
All configuration is loaded from environment variables or .env file.
"""

from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator

from exceptions import ConfigurationError

REDACTED_VALUE = "***REDACTED***"
MAX_EXPORT_TIMEOUT_MINUTES = 1440  # 24 hours

# GitLab import/export API limits per user and per minute.
# Do not raise these above GitLab's documented limits: exceeding them yields
# HTTP 429 and may restrict the account.
RATE_LIMIT_INTERVAL_SECONDS = 60
DOWNLOAD_RATE_LIMIT_BURST = 5
EXPORT_RATE_LIMIT_BURST = 6
IMPORT_RATE_LIMIT_BURST = 6
METADATA_RATE_LIMIT_BURST = 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # === GitLab Configuration ===
    gitlab_token: str = Field(
        default="",
        description="Personal Access Token for the GitLab API"
    )
    gitlab_uri: str = Field(
        default="https://gitlab.com",
        description="GitLab base URL (without /api/v4)"
    )
    gitlab_group_id: int = Field(
        default=0,
        ge=0,
        description="Group to backup (with all subgroups)"
    )
    gitlab_project_id: int = Field(
        default=0,
        ge=0,
        description="Single project to backup"
    )
    gitlab_request_timeout: float = Field(
        default=3600,
        gt=0,
        description="Timeout for a single GitLab API request in seconds"
    )

    # === Backup Configuration ===
    local_path: str = Field(
        default="",
        description="Local directory for archives (used when S3 is not configured)"
    )
    tmp_dir: str = Field(
        default="/tmp",
        description="Directory for temporary archives"
    )
    export_timeout_mins: int = Field(
        default=10,
        ge=1,
        le=MAX_EXPORT_TIMEOUT_MINUTES,
        description="Maximum time to wait for a project export"
    )
    backup_workers: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Number of projects exported in parallel"
    )
    stale_export_retries: int = Field(
        default=5,
        ge=1,
        description="Consecutive 'none' export statuses tolerated before giving up"
    )
    poll_interval_seconds: float = Field(
        default=5,
        gt=0,
        description="Delay between export/import status checks"
    )

    # === Restore Configuration ===
    import_timeout_mins: int = Field(
        default=10,
        ge=1,
        le=MAX_EXPORT_TIMEOUT_MINUTES,
        description="Maximum time to wait for a project import"
    )

    # === Hooks ===
    prebackup: str = Field(
        default="",
        description="Command executed before each project export"
    )
    postbackup: str = Field(
        default="",
        description="Command executed after each export (%INPUTFILE% = archive path)"
    )

    # === S3/MinIO Configuration ===
    s3_endpoint_url: Optional[str] = Field(
        default=None,
        description="S3-compatible endpoint URL (None for AWS S3)"
    )
    s3_bucket: str = Field(
        default="",
        description="Bucket name for backups"
    )
    s3_prefix: str = Field(
        default="",
        description="Optional prefix/folder in S3 bucket"
    )
    s3_region: str = Field(
        default="",
        description="S3 region"
    )
    s3_access_key: str = Field(
        default="",
        description="S3 access key"
    )
    s3_secret_key: str = Field(
        default="",
        description="S3 secret key"
    )
    s3_multipart_threshold: int = Field(
        default=100 * 1024 * 1024,
        description="File size threshold for multipart upload in bytes (default: 100MB)"
    )
    s3_multipart_chunk_size: int = Field(
        default=50 * 1024 * 1024,
        description="Chunk size for multipart upload in bytes (default: 50MB)"
    )

    # === Application Configuration ===
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)"
    )
    no_log_time: bool = Field(
        default=False,
        description="Omit timestamps from log output"
    )

    @field_validator("gitlab_uri")
    @classmethod
    def validate_gitlab_uri(cls, v: str) -> str:
        """Validate the GitLab URI is an absolute http(s) URL."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("gitlab_uri must be an http or https URL")
        return v.rstrip("/")

    @field_validator("s3_region")
    @classmethod
    def validate_s3_region(cls, v: str) -> str:
        """Validate region length when set."""
        if v and not 2 <= len(v) <= 20:
            raise ValueError("s3_region must be between 2 and 20 characters")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
            raise ValueError("log_level must be one of DEBUG, INFO, WARNING, ERROR")
        return level

    @property
    def api_url(self) -> str:
        """GitLab REST API base URL."""
        return f"{self.gitlab_uri}/api/v4"

    @property
    def is_s3_configured(self) -> bool:
        return bool(self.s3_bucket and self.s3_region)

    @property
    def is_local_configured(self) -> bool:
        return bool(self.local_path)

    def validate_for_backup(self) -> None:
        """Check the settings needed to run a backup.

        Raises:
            ConfigurationError: On the first violated requirement.
        """
        if self.gitlab_group_id <= 0 and self.gitlab_project_id <= 0:
            raise ConfigurationError(
                "either gitlab_group_id or gitlab_project_id must be set "
                "(use --group-id or --project-id, or the environment)"
            )
        if self.gitlab_group_id > 0 and self.gitlab_project_id > 0:
            raise ConfigurationError("cannot specify both gitlab_group_id and gitlab_project_id")
        if not self.gitlab_token:
            raise ConfigurationError("gitlab_token is required (set GITLAB_TOKEN)")
        if not self.is_s3_configured and not self.is_local_configured:
            raise ConfigurationError(
                "no storage configured: use --output for local storage or configure S3"
            )
        if not self.is_s3_configured and not Path(self.local_path).is_dir():
            raise ConfigurationError(f"{self.local_path}: path is not a directory")
        self._validate_tmp_dir()

    def validate_for_restore(self) -> None:
        """Check the settings needed to run a restore.

        Raises:
            ConfigurationError: On the first violated requirement.
        """
        if not self.gitlab_token:
            raise ConfigurationError("gitlab_token is required (set GITLAB_TOKEN)")
        self._validate_tmp_dir()

    def _validate_tmp_dir(self) -> None:
        tmp = Path(self.tmp_dir)
        if not tmp.exists():
            raise ConfigurationError(f"tmp_dir {self.tmp_dir} does not exist")
        if not tmp.is_dir():
            raise ConfigurationError(f"tmp_dir {self.tmp_dir} is not a directory")

    def secrets(self) -> list[str]:
        """Credential values that must never reach the console."""
        return [s for s in (self.gitlab_token, self.s3_access_key, self.s3_secret_key) if s]

    def redact(self, message: str) -> str:
        """Replace every credential occurring in ``message``."""
        for secret in self.secrets():
            message = message.replace(secret, REDACTED_VALUE)
        return message

    def redacted_dump(self) -> dict:
        """Settings as a dict with credentials masked, for display."""
        data = self.model_dump()
        for key in ("gitlab_token", "s3_access_key", "s3_secret_key"):
            if data.get(key):
                data[key] = REDACTED_VALUE
        return data
