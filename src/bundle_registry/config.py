"""
Configuration for the bundle registry.

Settings load from ``bundle-registry.yaml`` in the working directory (or an
explicit path). ``BUNDLE_REGISTRY_*`` environment variables override file
values, with ``__`` as the nested delimiter, e.g.
``BUNDLE_REGISTRY_GITHUB__TIMEOUT=30``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal, TypeVar

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from bundle_registry.core.exceptions import SourceConfigError

CONFIG_FILENAME = "bundle-registry.yaml"
DEFAULT_CACHE_TTL = 300.0

SourceType = Literal["apm", "local-apm", "github", "local-skills", "local-skill-md", "http"]


class GitHubSettings(BaseModel):
    api_base: str = "https://api.github.com"
    raw_base: str = "https://raw.githubusercontent.com"
    user_agent: str = "bundle-registry"
    timeout: float = 30.0
    credential_command: list[str] = Field(default_factory=lambda: ["gh", "auth", "token"])
    credential_timeout: float = 5.0


class PackageCliSettings(BaseModel):
    command: str = "apm"
    uvx_command: str = "uvx"
    timeout: float = 300.0
    """Seconds allowed for a single ``install`` run."""


class LoggingSettings(BaseModel):
    level: str = "WARNING"


class RegistrySource(BaseModel):
    """A configured bundle source."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str | None = None
    url: str
    type: SourceType
    token: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True

    @field_validator("url")
    @classmethod
    def _strip_url(cls, value: str) -> str:
        return value.strip()

    @property
    def display_name(self) -> str:
        return self.name or self.id


class SourceConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    cache_ttl: float = Field(
        default=DEFAULT_CACHE_TTL,
        validation_alias=AliasChoices("cache_ttl", "cacheTtl"),
    )


class ApmSourceConfig(SourceConfig):
    branch: str = "main"


class LocalApmSourceConfig(SourceConfig):
    scan_subdirectories: bool = Field(
        default=True,
        validation_alias=AliasChoices("scan_subdirectories", "scanSubdirectories"),
    )
    max_depth: int = Field(
        default=2,
        ge=0,
        validation_alias=AliasChoices("max_depth", "maxDepth"),
    )


class ReleaseSourceConfig(SourceConfig):
    include_prereleases: bool = Field(
        default=False,
        validation_alias=AliasChoices("include_prereleases", "includePrereleases"),
    )


class HttpIndexSourceConfig(SourceConfig):
    index_file: str = Field(
        default="index.json",
        validation_alias=AliasChoices("index_file", "indexFile"),
    )


ConfigT = TypeVar("ConfigT", bound=SourceConfig)


def load_source_config(model: type[ConfigT], source: RegistrySource) -> ConfigT:
    """Validate the per-source ``config`` mapping, raising :class:`SourceConfigError`."""
    try:
        return model.model_validate(source.config)
    except ValidationError as exc:
        raise SourceConfigError(f"Invalid config for source {source.id}", str(exc)) from exc


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BUNDLE_REGISTRY_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    cache_ttl: float = DEFAULT_CACHE_TTL
    temp_root: str | None = None
    """Parent directory for install scratch space; the system temp dir when unset."""

    github: GitHubSettings = Field(default_factory=GitHubSettings)
    package_cli: PackageCliSettings = Field(default_factory=PackageCliSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    sources: list[RegistrySource] = Field(default_factory=list)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over values read from the YAML file.
        return env_settings, init_settings, dotenv_settings, file_secret_settings


_settings: Settings | None = None


def _load_yaml(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        raise ValueError(f"Expected a mapping at the top of {path}")
    return payload


def get_settings(config_path: str | None = None) -> Settings:
    """Return the process settings, loading them on first use."""
    global _settings
    if config_path is None and _settings is not None:
        return _settings

    path = Path(config_path) if config_path else Path.cwd() / CONFIG_FILENAME
    payload = _load_yaml(path) if path.is_file() else {}
    settings = Settings(**payload)
    if config_path is None:
        _settings = settings
    return settings
