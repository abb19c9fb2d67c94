"""Pydantic configuration models for targets and process settings."""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Dict, List, Literal, Optional
import os


class DatabaseConfig(BaseModel):
    """Connection parameters of one MySQL instance."""
    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(default=3306, ge=1, le=65535)
    user: str = "monitor"
    password: str = ""
    connect_timeout: int = Field(default=10, ge=1)


class TargetConfig(BaseModel):
    """One monitored instance, loaded fresh from its file on every tick."""
    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig
    endpoint: Optional[str] = None  # Agent-side identity, defaults to host
    tags: Dict[str, str] = Field(default_factory=dict)
    step: Optional[int] = Field(default=None, ge=1)  # Polling step override
    agent_url: Optional[str] = None  # Overrides the process-wide agent URL
    log_dir: Optional[str] = None
    snapshot_dir: Optional[str] = None
    snapshot_days: int = Field(default=7, ge=1)
    engine: str = "innodb_status"
    ignore_metrics: List[str] = Field(default_factory=list)
    source: str = ""  # Path of the file this target was loaded from

    @field_validator('agent_url')
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate URL format."""
        if v is not None and not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v

    @field_validator('tags')
    @classmethod
    def validate_tags(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Tag keys and values end up in a comma separated k=v string."""
        for key, value in v.items():
            if any(ch in str(key) + str(value) for ch in ",="):
                raise ValueError(f"Tag {key}={value} must not contain ',' or '='")
        return v

    @property
    def key(self) -> str:
        """Single-flight key: one pipeline per server at a time."""
        return f"{self.database.host}:{self.database.port}"

    @property
    def endpoint_name(self) -> str:
        return self.endpoint or self.database.host


class MonitorSettings(BaseModel):
    """Process-wide scheduler, pool and publisher settings."""

    interval: int = Field(default=60, ge=1)  # Tick interval in seconds
    deadline: float = Field(default=30.0, gt=0)  # Per-pipeline deadline in seconds
    workers: int = Field(default_factory=lambda: os.cpu_count() or 1, ge=1)
    queue_size: int = Field(default=0, ge=0)  # 0 means "same as workers"
    overflow: Literal["drop", "queue"] = "drop"
    agent_url: str = "http://127.0.0.1:1988/v1/push"
    push_timeout: float = Field(default=5.0, gt=0)
    stats_interval: int = Field(default=10, ge=1)
    abort_grace: float = Field(default=5.0, ge=0)

    @field_validator('agent_url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL format."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('URL must start with http:// or https://')
        return v

    @property
    def effective_queue_size(self) -> int:
        return self.queue_size or self.workers
