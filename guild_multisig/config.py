"""Guild Multisig — Configuration for the coordination core.

Settings are passed in explicitly (a mapping, keyword arguments or a JSON
file); the process environment is never consulted. Keys may be given in
snake_case or camelCase (``storage_dir`` or ``storageDir``).
"""

from __future__ import annotations

import enum
import json
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from guild_multisig.core.errors import InvalidConfig
from guild_multisig.core.schema import Urgency


class _Section(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# ── Notifications ──────────────────────────────────────────────


class ConsoleSettings(_Section):
    enabled: bool = True


class WebhookSettings(_Section):
    enabled: bool = False
    url: str = ""
    retries: int = Field(default=3, ge=1, description="Delivery attempts per event")
    timeout_ms: int = Field(default=5000, gt=0)


class ChatSettings(_Section):
    enabled: bool = False
    endpoint: str = ""
    username: str = "Multisig Bot"
    timeout_ms: int = Field(default=5000, gt=0)


class EmailSettings(_Section):
    enabled: bool = False
    smtp_host: str = ""
    smtp_port: int = 587
    username: str = ""
    password: str = ""
    sender: str = ""
    recipients: list[str] = Field(default_factory=list)
    use_tls: bool = True
    timeout_ms: int = Field(default=5000, gt=0)


class NotificationSettings(_Section):
    console: ConsoleSettings = Field(default_factory=ConsoleSettings)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    email: EmailSettings = Field(default_factory=EmailSettings)
    queue_size: int = Field(default=1000, ge=1, description="Recent events kept for inspection")


# ── Core ───────────────────────────────────────────────────────


class StorageBackend(str, enum.Enum):
    FILE = "file"
    MEMORY = "memory"
    SQL = "sql"


DEFAULT_EXPIRY_DAYS_BY_URGENCY: dict[Urgency, int] = {
    Urgency.LOW: 7,
    Urgency.NORMAL: 7,
    Urgency.HIGH: 7,
    Urgency.EMERGENCY: 1,
}


class MultisigSettings(BaseSettings):
    """Central configuration for a coordinator instance."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    # ── Storage ────────────────────────────────────────────────
    storage_dir: str = "./multisig-data"
    storage_backend: StorageBackend = StorageBackend.FILE
    database_url: str = "sqlite:///multisig.db"
    enable_file_storage: bool = True
    enable_backups: bool = True
    max_backups_per_record: int = Field(default=10, ge=1)
    audit_retention_days: int = Field(default=30, ge=1)

    # ── Notifications ──────────────────────────────────────────
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)

    # ── Proposals ──────────────────────────────────────────────
    default_expiry_days_by_urgency: dict[Urgency, int] = Field(
        default_factory=lambda: dict(DEFAULT_EXPIRY_DAYS_BY_URGENCY)
    )

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "console"  # "console" or "json"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings,)

    @field_validator("default_expiry_days_by_urgency")
    @classmethod
    def _fill_expiry_defaults(cls, value: dict[Urgency, int]) -> dict[Urgency, int]:
        merged = {**DEFAULT_EXPIRY_DAYS_BY_URGENCY, **value}
        for urgency, days in merged.items():
            if days < 1:
                raise ValueError(f"expiry for {urgency.value} must be at least 1 day")
        return merged

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        if value not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return value

    @property
    def effective_backend(self) -> StorageBackend:
        if not self.enable_file_storage:
            return StorageBackend.MEMORY
        return self.storage_backend

    @classmethod
    def load(cls, mapping: Mapping[str, Any] | None = None, **overrides: Any) -> MultisigSettings:
        """Build settings, reporting any problem as ``InvalidConfig``."""
        try:
            return cls(**{**dict(mapping or {}), **overrides})
        except ValidationError as exc:
            raise InvalidConfig(f"Invalid multisig settings: {exc}") from exc

    @classmethod
    def from_json_file(cls, path: str | Path) -> MultisigSettings:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise InvalidConfig(f"Cannot read settings file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise InvalidConfig(f"Settings file {path} must hold a JSON object")
        return cls.load(data)
