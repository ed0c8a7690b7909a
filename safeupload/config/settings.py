"""
Configuration for safeupload using Pydantic Settings.

Settings come from a YAML file and can be overridden by environment
variables of the form ``SAFEUPLOAD_SECTION__KEY``, for example
``SAFEUPLOAD_STORAGE__BASE_DIR=/srv/uploads``.

Config file search order:
1. SAFEUPLOAD_CONFIG_PATH environment variable
2. ./config.yaml
3. safeupload/config/config.yaml (packaged defaults)
"""

from __future__ import annotations

import logging
import os
from typing import Any, ClassVar, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

# Plain logging while configuration loads; safeupload logging is set up from it
_basic_logger = logging.getLogger(__name__)


def _parse_mode(value: Any) -> Any:
    """Accept permission modes as ints or octal strings like ``"0755"``."""
    if isinstance(value, str):
        return int(value, 8)
    return value


class StorageSettings(BaseModel):
    """Local storage configuration."""
    base_dir: str = Field(default=".safeupload/uploads",
                          description="Base directory all uploads are stored under")
    create_missing_directories: bool = Field(
        default=True, description="Create missing destination directories")
    directory_permissions: int = Field(
        default=0o755, ge=0, le=0o7777, description="Mode for created directories")
    file_permissions: int | None = Field(
        default=0o644, description="Mode for stored files, null keeps 0600")
    overwrite: bool = Field(default=False, description="Replace existing files by default")

    @field_validator("directory_permissions", "file_permissions", mode="before")
    @classmethod
    def parse_permissions(cls, value: Any) -> Any:
        return _parse_mode(value)


class ValidationSettings(BaseModel):
    """Content validation configuration."""
    max_file_size_mb: int = Field(default=100, ge=1, le=10240)
    use_libmagic: bool = Field(
        default=True, description="Ask libmagic about binary content with no built-in signature")
    sniff_bytes: int = Field(default=8192, ge=512, le=1024 * 1024)
    allowed_file_types: list[str] = Field(
        default_factory=lambda: ["image", "pdf", "cad"],
        description="Policy tokens: categories, extensions, mime:<type> or all"
    )


class CollisionSettings(BaseModel):
    """Filename collision configuration."""
    strategy: Literal["increment", "uuid", "timestamp"] = Field(default="increment")
    high_performance: bool = Field(
        default=False, description="Always use the uuid strategy")
    filter_by_policy: bool = Field(
        default=False, description="Only probe extensions the policy can accept")
    max_increment_attempts: int = Field(default=1000, ge=1)
    max_uuid_attempts: int = Field(default=100, ge=1)
    max_timestamp_attempts: int = Field(default=1000, ge=1)


class UploadSettings(BaseModel):
    """Batch upload behaviour."""
    generate_unique_filenames: bool = Field(default=False)
    rollback_on_error: bool = Field(default=False)


class LoggingSettings(BaseModel):
    """Logging configuration (raw dict for logging.config.dictConfig)."""
    version: int = Field(default=1)
    disable_existing_loggers: bool = Field(default=False)
    formatters: dict[str, Any] = Field(default_factory=dict)
    handlers: dict[str, Any] = Field(default_factory=dict)
    root: dict[str, Any] = Field(default_factory=dict)
    loggers: dict[str, Any] = Field(default_factory=dict)

    model_config = {'extra': 'allow'}


class AppSettings(BaseSettings):
    """
    Application settings.

    Priority (highest first): environment variables, YAML file, defaults.
    """

    storage: StorageSettings = Field(default_factory=StorageSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    collision: CollisionSettings = Field(default_factory=CollisionSettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_prefix="SAFEUPLOAD_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # YAML data handed to the settings source while from_yaml runs
    _yaml_data: ClassVar[dict[str, Any] | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        class YamlSettingsSource(PydanticBaseSettingsSource):
            def get_field_value(
                    self, field: Any, field_name: str) -> tuple[Any, str, bool]:
                data = cls._yaml_data or {}
                return data.get(field_name), field_name, False

            def __call__(self) -> dict[str, Any]:
                return dict(cls._yaml_data or {})

        return (
            env_settings,
            YamlSettingsSource(settings_cls),
            init_settings,
        )

    @classmethod
    def from_yaml(cls, config_path: str | None = None) -> AppSettings:
        """
        Load settings from a YAML file.

        Args:
            config_path: Explicit config file, skips the search if given

        Returns:
            AppSettings instance

        Raises:
            FileNotFoundError: If no config file is found
            ValueError: If the file is not valid YAML or fails validation
        """
        if config_path is None:
            config_path = cls._find_config_file()

        _basic_logger.info(f"Loading configuration from: {config_path}")

        try:
            with open(config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise FileNotFoundError(
                f"Configuration file not found: {config_path}\n"
                f"Tried search paths: {cls._get_search_paths()}"
            )
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file {config_path}: {e}")

        if not isinstance(config_data, dict):
            raise ValueError(f"Configuration file {config_path} must contain a mapping")

        cls._yaml_data = config_data
        try:
            return cls()
        except ValidationError as e:
            _basic_logger.error(f"Configuration validation failed: {e}")
            raise ValueError(f"Configuration validation failed:\n{e}")
        finally:
            cls._yaml_data = None

    @staticmethod
    def _get_search_paths() -> list[str]:
        return [
            os.getenv("SAFEUPLOAD_CONFIG_PATH", ""),
            "./config.yaml",
            os.path.join(os.path.dirname(__file__), "config.yaml"),
        ]

    @classmethod
    def _find_config_file(cls) -> str:
        """
        Return the first existing config file on the search path.

        Raises:
            FileNotFoundError: If none exists
        """
        search_paths = cls._get_search_paths()
        for path in search_paths:
            if path and os.path.isfile(path):
                _basic_logger.debug(f"Found config file at: {path}")
                return path

        raise FileNotFoundError(
            "No configuration file found. Searched in:\n" +
            "\n".join(f"  - {p}" for p in search_paths if p) +
            "\n\nSet SAFEUPLOAD_CONFIG_PATH or place config.yaml in the working directory."
        )


class ConfigManager:
    """Singleton wrapper around AppSettings."""

    _instance: ConfigManager | None = None
    _settings: AppSettings | None = None
    _config_path: str | None = None

    @classmethod
    def get_instance(cls) -> ConfigManager:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (for testing)."""
        cls._instance = None
        cls._settings = None
        cls._config_path = None

    def load(self, config_path: str | None = None) -> dict[str, Any]:
        """
        Load configuration, once unless an explicit path is given.

        Returns:
            Configuration as dictionary
        """
        if self._settings is not None and config_path is None:
            return self._settings.model_dump()

        ConfigManager._config_path = config_path
        ConfigManager._settings = AppSettings.from_yaml(config_path)
        return self._settings.model_dump()

    @property
    def settings(self) -> AppSettings:
        if self._settings is None:
            self.load()
        return self._settings

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a value using dot notation, e.g. ``"storage.base_dir"``.

        Args:
            key: Dotted key
            default: Returned when any part of the key is missing
        """
        value: Any = self.settings.model_dump()
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                return default
            value = value[part]
        return value

    def get_config(self) -> dict[str, Any]:
        return self.settings.model_dump()

    def get_config_path(self) -> str | None:
        return self._config_path

    @property
    def storage_base_dir(self) -> str:
        return self.settings.storage.base_dir

    @property
    def allowed_file_types(self) -> list[str]:
        return list(self.settings.validation.allowed_file_types)

    @property
    def collision_strategy(self) -> str:
        return self.settings.collision.strategy

    @property
    def logging_config(self) -> dict[str, Any]:
        return self.settings.logging.model_dump()


def get_config_manager() -> ConfigManager:
    """Get the ConfigManager singleton instance."""
    return ConfigManager.get_instance()


__all__ = [
    'AppSettings',
    'CollisionSettings',
    'ConfigManager',
    'LoggingSettings',
    'StorageSettings',
    'UploadSettings',
    'ValidationSettings',
    'get_config_manager',
]
