# ABOUTME: Configuration management for Teardrop using pydantic-settings
# ABOUTME: Loads settings from a YAML file, environment variables and .env files

import os
from pathlib import Path

import yaml
from pydantic import ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from teardrop.switch.config import DriveConfig, ProtectedItem, SwitchConfig, TwilioConfig

CONFIG_FILE_ENV = "TEARDROP_CONFIG_FILE"
DEFAULT_CONFIG_FILE = "teardrop.yaml"


class ConfigError(Exception):
    """Raised when the configuration cannot be loaded. Fatal to startup."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("Invalid configuration:\n" + "\n".join(f"  - {p}" for p in problems))

    @classmethod
    def from_validation_error(cls, exc: ValidationError) -> "ConfigError":
        """Name the offending field and raw value for each validation error."""
        problems = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"]) or "<root>"
            problems.append(f"{location}: {error['msg']} (got {error.get('input')!r})")
        return cls(problems)


class Settings(BaseSettings):
    """Teardrop configuration settings loaded from file and environment."""

    model_config = SettingsConfigDict(
        env_prefix="TEARDROP_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    switch: SwitchConfig = SwitchConfig()
    twilio: TwilioConfig
    drive: DriveConfig = DriveConfig()
    items: list[ProtectedItem] = []

    # Directory for the markdown audit trail (disabled if unset)
    audit_path: Path | None = None

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8080

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Environment overrides the YAML file; the file holds the item list."""
        yaml_file = os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_FILE)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
        )

    @field_validator("items")
    @classmethod
    def validate_unique_items(cls, v: list[ProtectedItem]) -> list[ProtectedItem]:
        file_ids = [item.file_id for item in v]
        duplicates = sorted({f for f in file_ids if file_ids.count(f) > 1})
        if duplicates:
            raise ValueError(f"duplicate item file_id: {', '.join(duplicates)}")
        return v

    def validate_ready(self) -> list[str]:
        """Check if all required settings are configured. Returns list of errors."""
        errors = []

        if not self.twilio.account_sid:
            errors.append("twilio.account_sid is required")

        if not self.twilio.auth_token:
            errors.append("twilio.auth_token is required")

        if not self.twilio.to_number or not self.twilio.from_number:
            errors.append("twilio.to_number and twilio.from_number are required")

        if self.drive.credentials_file and not self.drive.credentials_file.is_file():
            errors.append(f"drive.credentials_file {self.drive.credentials_file} does not exist")

        if not self.items:
            errors.append("items is empty, there is nothing to release")

        return errors


def get_settings() -> Settings:
    """
    Load settings.

    Raises:
        ConfigError: If any field is missing or invalid
    """
    try:
        return Settings()
    except ValidationError as e:
        raise ConfigError.from_validation_error(e) from e
    except yaml.YAMLError as e:
        config_file = os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_FILE)
        raise ConfigError([f"{config_file}: unparsable YAML ({e})"]) from e
