"""
SDK configuration.

Settings are pydantic models so that invalid strategy or provider names fail
at construction time. ``ClientSettings.from_env`` builds a configuration from
environment variables, loading a ``.env`` file first when one is present.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from replica.constants import (
    CACHE_STORE_KEY,
    DEFAULT_CACHE_MAX_AGE_MINUTES,
    DEFAULT_FILES_STORAGE_PATH,
    DEFAULT_MAX_SYNC_PASSES,
    DEFAULT_STORAGE_PATH,
    DEFAULT_SYNC_INTERVAL_SECONDS,
    MAX_CONCURRENT_DOWNLOADS,
)
from replica.schema.sync import ConflictResolutionStrategy

ENV_LOCATIONS = [
    Path.cwd() / ".env",
    Path.home() / ".replica" / ".env",
]


class StorageProvider(str, Enum):
    """Backends for the local store."""

    MEMORY = "memory"
    FILE_SYSTEM = "fileSystem"
    SQLITE = "sqlite"
    CUSTOM = "custom"


class EncryptionProviderType(str, Enum):
    """Encryption-at-rest providers."""

    DEFAULT = "default"
    CUSTOM = "custom"


class ConflictSettings(BaseModel):
    """How conflicting items are resolved during sync."""

    strategy: ConflictResolutionStrategy = ConflictResolutionStrategy.CLIENT_WINS
    # Called as implementation(conflicts, proceed); must call proceed() when done
    implementation: Callable[..., Any] | None = None

    model_config = {"arbitrary_types_allowed": True}


class StorageSettings(BaseModel):
    """Where offline data is persisted."""

    provider: StorageProvider = StorageProvider.FILE_SYSTEM
    storage_path: str = DEFAULT_STORAGE_PATH
    name: str = ""
    implementation: Any = None  # BaseStore instance for the custom provider


class EncryptionSettings(BaseModel):
    """Encryption applied to persisted offline collections."""

    provider: EncryptionProviderType = EncryptionProviderType.DEFAULT
    key: str = ""
    implementation: Any = None


class FilesSettings(BaseModel):
    """Offline file content."""

    storage_path: str = DEFAULT_FILES_STORAGE_PATH
    max_concurrent_downloads: int = Field(default=MAX_CONCURRENT_DOWNLOADS, ge=1)


class TypeSettings(BaseModel):
    """Per content type cache settings."""

    enabled: bool = True
    max_age: float | None = None  # minutes


class OfflineStorageSettings(BaseModel):
    """Offline storage and synchronization."""

    enabled: bool = True
    auto_sync: bool = True
    offline: bool = False
    conflicts: ConflictSettings = Field(default_factory=ConflictSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    encryption: EncryptionSettings = Field(default_factory=EncryptionSettings)
    files: FilesSettings = Field(default_factory=FilesSettings)
    max_sync_passes: int = Field(default=DEFAULT_MAX_SYNC_PASSES, ge=1)
    sync_interval_seconds: int = Field(default=DEFAULT_SYNC_INTERVAL_SECONDS, ge=1)


class CachingSettings(BaseModel):
    """Query result cache."""

    enabled: bool = False
    max_age: float = DEFAULT_CACHE_MAX_AGE_MINUTES  # minutes
    storage_path: str = CACHE_STORE_KEY
    type_settings: dict[str, TypeSettings] = Field(default_factory=dict)

    @property
    def max_age_ms(self) -> int:
        return int(self.max_age * 60 * 1000)

    def for_type(self, content_type: str) -> TypeSettings | None:
        return self.type_settings.get(content_type)


class ClientSettings(BaseModel):
    """Top level SDK configuration."""

    api_key: str = ""
    base_url: str = "http://localhost:8080/v1/"
    token: str | None = None
    token_type: str = "Bearer"
    offline_storage: OfflineStorageSettings = Field(
        default_factory=lambda: OfflineStorageSettings(enabled=False)
    )
    caching: CachingSettings = Field(default_factory=CachingSettings)

    @field_validator("offline_storage", mode="before")
    @classmethod
    def _offline_shorthand(cls, value: Any) -> Any:
        # offline_storage=True enables offline storage with the defaults
        if value is True:
            return OfflineStorageSettings()
        if value is False or value is None:
            return OfflineStorageSettings(enabled=False)
        return value

    @field_validator("caching", mode="before")
    @classmethod
    def _caching_shorthand(cls, value: Any) -> Any:
        if value is True:
            return CachingSettings(enabled=True)
        if value is False or value is None:
            return CachingSettings(enabled=False)
        return value

    @field_validator("base_url")
    @classmethod
    def _trailing_slash(cls, value: str) -> str:
        return value if value.endswith("/") else value + "/"

    @classmethod
    def from_env(cls, **overrides: Any) -> ClientSettings:
        """Build settings from ``REPLICA_*`` environment variables."""
        for env_path in ENV_LOCATIONS:
            if env_path.exists():
                load_dotenv(env_path)
                break

        env = os.environ
        offline_enabled = _env_bool(env.get("REPLICA_OFFLINE_STORAGE"), default=True)
        storage = StorageSettings(
            provider=env.get("REPLICA_STORAGE_PROVIDER", StorageProvider.FILE_SYSTEM.value),
            storage_path=env.get("REPLICA_STORAGE_PATH", DEFAULT_STORAGE_PATH),
        )
        offline = OfflineStorageSettings(
            enabled=offline_enabled,
            conflicts=ConflictSettings(
                strategy=env.get(
                    "REPLICA_CONFLICT_STRATEGY", ConflictResolutionStrategy.CLIENT_WINS.value
                ),
            ),
            storage=storage,
        )
        caching = CachingSettings(
            enabled=_env_bool(env.get("REPLICA_CACHE_ENABLED"), default=False),
            max_age=float(env.get("REPLICA_CACHE_MAX_AGE", DEFAULT_CACHE_MAX_AGE_MINUTES)),
        )

        values: dict[str, Any] = {
            "api_key": env.get("REPLICA_API_KEY", ""),
            "base_url": env.get("REPLICA_BASE_URL", "http://localhost:8080/v1/"),
            "token": env.get("REPLICA_TOKEN") or None,
            "offline_storage": offline,
            "caching": caching,
        }
        values.update(overrides)
        return cls(**values)


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")
