"""Configuration models describing Fieldbook settings."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FieldbookBaseModel(BaseModel):
    """Shared configuration for Fieldbook Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class ApiSettings(FieldbookBaseModel):
    """Back-office RPC settings.

    Attributes:
        base_url: Root URL every endpoint path is appended to.
        token: Bearer token attached to each request.
        timeout_seconds: Upper bound for a single request.
        default_limit: Page size requested when a query does not specify one.
    """

    base_url: str = "http://localhost:8000"
    token: Optional[str] = None
    timeout_seconds: float = Field(default=30.0, gt=0)
    default_limit: int = Field(default=10, ge=1)


class PagingSettings(FieldbookBaseModel):
    """Settings describing how server records are identified and grouped.

    Attributes:
        id_fields: Candidate identifier fields, checked in order.
        status_field: Field used as the default grouping key.
    """

    id_fields: List[str] = Field(default_factory=lambda: ["_id", "id"], min_length=1)
    status_field: str = "status"


class CacheSettings(FieldbookBaseModel):
    """Local image cache settings.

    Attributes:
        directory: Directory cached images are written to.
        owner_markers: Path segments that follow the owner id in image URLs.
        download_timeout_seconds: Upper bound for a single image download.
    """

    directory: str = "~/.fieldbook/cache/images"
    owner_markers: List[str] = Field(default_factory=lambda: ["profile"], min_length=1)
    download_timeout_seconds: float = Field(default=30.0, gt=0)


class LoggingSettings(FieldbookBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Optional log file; rotation applies when set.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "WARNING"
    file: Optional[str] = None
    max_size_mb: int = 10
    backup_count: int = 5


class FieldbookConfig(FieldbookBaseModel):
    """Top-level configuration struct for Fieldbook.

    Attributes:
        api: Back-office RPC settings.
        paging: Record identity and grouping settings.
        cache: Image cache settings.
        logging: Logging configuration.
    """

    api: ApiSettings = Field(default_factory=ApiSettings)
    paging: PagingSettings = Field(default_factory=PagingSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


__all__ = [
    "FieldbookBaseModel",
    "ApiSettings",
    "PagingSettings",
    "CacheSettings",
    "LoggingSettings",
    "FieldbookConfig",
]
