"""Configuration management for the infrastructure orchestrator."""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environments."""

    DEV = "dev"
    STG = "stg"
    PROD = "prod"


class ApprovalChannelType(str, Enum):
    """How approval requests reach a human."""

    CONSOLE = "console"
    DENY = "deny"


class CredentialBackend(str, Enum):
    """Where scoped stage credentials come from."""

    SECRETSMANAGER = "secretsmanager"
    ENV = "env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="INFRA_ORCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Paths
    workspace_dir: Path = Field(
        default=Path(".infra-orchestrator/workspaces"),
        description="Directory that receives per-run checkouts",
    )
    plan_dir: Path = Field(
        default=Path(".infra-orchestrator/plans"),
        description="Directory holding plan artifacts and run records",
    )
    definitions_subdir: str = Field(
        default="", description="Sub-directory of the checkout holding the definitions"
    )

    # Plan artifacts
    plan_prefix: str = Field(default="tfplan", description="Plan artifact file name prefix")
    plan_extension: str = Field(default="plan", description="Plan artifact file extension")
    plan_retention: int = Field(default=3, ge=1, description="Plan artifacts kept per environment")

    # Infrastructure tool
    tool_binary: str = Field(default="terraform", description="Infrastructure tool executable")
    format_check: bool = Field(default=True, description="Run a format check before validate")
    format_check_strict: bool = Field(
        default=True, description="Fail the run when the format check fails"
    )
    test_command: str = Field(
        default="terraform test -no-color", description="Command run by the test stage"
    )
    region_variable: str = Field(
        default="region", description="Variable name the region is passed as"
    )
    stage_timeout_seconds: int = Field(default=1800, ge=1, description="Per-stage timeout")

    # Source checkout
    repository_url: Optional[str] = Field(default=None, description="Definitions repository")
    repository_ref: str = Field(default="main", description="Branch, tag or commit to check out")
    repository_credential_secret: Optional[str] = Field(
        default=None, description="Secret identifier used for the checkout"
    )
    source_dir: Optional[Path] = Field(
        default=None, description="Use an existing local directory instead of cloning"
    )

    # Approvals
    approval_timeout_minutes: float = Field(default=30.0, gt=0, description="Per-gate timeout")
    approval_channel: ApprovalChannelType = Field(default=ApprovalChannelType.CONSOLE)
    escalated_actions: list[str] = Field(
        default_factory=lambda: ["destroy"],
        description="Actions that open a second gate in escalated environments",
    )

    # Collaborators
    notify_topic_arn: Optional[str] = Field(default=None, description="SNS topic for run status")
    archive_bucket: Optional[str] = Field(default=None, description="S3 bucket for run records")
    credential_backend: CredentialBackend = Field(default=CredentialBackend.SECRETSMANAGER)
    aws_region: str = Field(default="us-east-1", description="AWS region for collaborators")

    # Environment table override
    environments_file: Optional[Path] = Field(
        default=None, description="YAML file replacing the built-in environment table"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="Optional log file")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
