"""
Configuration models for indexsync.

Handles index connection settings, batching thresholds, per-entity-kind
switches, the crawl schedule and mapping auto-load.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..errors import ConfigurationError


class QdrantConfig(BaseModel):
    """Qdrant connection configuration"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    url: str = "http://localhost:6333"
    location: Optional[str] = None  # e.g. ":memory:" for an embedded index
    api_key: Optional[str] = None
    timeout: float = Field(default=60.0, gt=0)

    # Page size used when scrolling a whole document type
    scroll_batch_size: int = Field(default=256, ge=1, le=10000)

    @field_validator('url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Qdrant URL format"""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('Qdrant URL must start with http:// or https://')
        return v.rstrip('/')


class BulkingConfig(BaseModel):
    """Flush thresholds of the batching connector"""
    actions: int = Field(default=1000, ge=1)
    megabytes: float = Field(default=5.0, gt=0)
    seconds: float = Field(default=5.0, gt=0)

    @property
    def max_bytes(self) -> int:
        return int(self.megabytes * 1024 * 1024)


class ConnectorConfig(BaseModel):
    """Index connector selection"""
    kind: str = "bulking"
    qdrant: QdrantConfig = Field(default_factory=QdrantConfig)
    bulking: BulkingConfig = Field(default_factory=BulkingConfig)

    @field_validator('kind')
    @classmethod
    def validate_kind(cls, v: str) -> str:
        valid_kinds = {'eager', 'bulking'}
        if v.lower() not in valid_kinds:
            raise ValueError(f'Connector kind must be one of: {valid_kinds}')
        return v.lower()


class EntityKindConfig(BaseModel):
    """Per entity kind switch and document type name"""
    enabled: bool = True
    doc_type: str = Field(min_length=1)


class ScheduleMode(str, Enum):
    """Recurrence of the full crawl"""
    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ScheduleSpec(BaseModel):
    """
    Crawl schedule, read once at startup.

    ``day`` is a weekday for weekly schedules (0 = Monday ... 6 = Sunday)
    and a day of month (1-31) for monthly ones.
    """
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    mode: ScheduleMode = ScheduleMode.DAILY
    hour: int = Field(default=2, ge=0, le=23)
    day: int = Field(default=0, ge=0, le=31)
    clear_every_n_passes: int = Field(default=0, ge=0)
    clear_on_start: bool = False
    crawl_on_start: bool = True

    @field_validator('mode', mode='before')
    @classmethod
    def normalize_mode(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @model_validator(mode='after')
    def validate_day(self) -> 'ScheduleSpec':
        if self.mode == ScheduleMode.WEEKLY and not 0 <= self.day <= 6:
            raise ValueError('Weekly schedules need day between 0 (Monday) and 6 (Sunday)')
        if self.mode == ScheduleMode.MONTHLY and not 1 <= self.day <= 31:
            raise ValueError('Monthly schedules need day between 1 and 31')
        return self


class MappingConfig(BaseModel):
    """Schema mapping auto-load"""
    load: bool = False
    types: List[str] = Field(default_factory=list)
    file: Optional[Path] = None

    @field_validator('types', mode='before')
    @classmethod
    def split_types(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [t.strip() for t in v.split(',') if t.strip()]
        return v


class SyncConfig(BaseModel):
    """Top-level configuration of the synchronization service"""
    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True
    )

    index: str = Field(default="shindig", min_length=1)
    connector: ConnectorConfig = Field(default_factory=ConnectorConfig)

    profiles: EntityKindConfig = Field(default_factory=lambda: EntityKindConfig(doc_type="person"))
    activities: EntityKindConfig = Field(default_factory=lambda: EntityKindConfig(doc_type="activity"))
    messages: EntityKindConfig = Field(default_factory=lambda: EntityKindConfig(doc_type="message"))

    crawl: ScheduleSpec = Field(default_factory=ScheduleSpec)
    mapping: MappingConfig = Field(default_factory=MappingConfig)

    # Incremental synchronization
    handle_events: bool = True
    skills_enabled: bool = True

    # Inject the owner's friends as an access whitelist into activities
    add_friends: bool = False

    @field_validator('index')
    @classmethod
    def validate_index(cls, v: str) -> str:
        """Index names become collection names"""
        if not v.replace('-', '').replace('_', '').isalnum():
            raise ValueError('Index name must be alphanumeric with dashes/underscores')
        return v.lower()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SyncConfig':
        """
        Validate a raw configuration mapping.

        Raises:
            ConfigurationError: If any setting is missing or invalid
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            key = '.'.join(str(part) for part in first.get('loc', ()))
            raise ConfigurationError(first.get('msg', str(e)), key=key or None) from e

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')


class GlobalSettings(BaseSettings):
    """Process-wide settings with environment variable support"""
    model_config = SettingsConfigDict(
        env_prefix="INDEXSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    config_file: Optional[Path] = None

    # Logging
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
