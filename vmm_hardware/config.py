"""
Configuration management for vmm-hardware.

This module handles loading and validating configuration from YAML files and
environment variables. Precedence is environment, then file, then defaults.
"""

import os
import shlex
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigurationError


def _platform_default_editor() -> str:
    return "notepad" if sys.platform.startswith("win") else "vi"


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class LibvirtConfig(BaseModel):
    """Libvirt connection configuration."""

    uri: str = Field(default="qemu:///system", description="Libvirt connection URI")
    timeout: int = Field(default=30, ge=1, le=300, description="Connection timeout in seconds")
    readonly: bool = Field(default=False, description="Use read-only connection")


class EditorConfig(BaseModel):
    """External XML editor configuration."""

    visual: Optional[str] = Field(default=None, description="Visual editor command (VISUAL)")
    editor: Optional[str] = Field(default=None, description="General editor command (EDITOR)")
    default_command: str = Field(
        default_factory=_platform_default_editor,
        description="Editor used when neither VISUAL nor EDITOR is set",
    )
    temp_dir: Optional[str] = Field(default=None, description="Directory for edit buffers")
    terminate_timeout: float = Field(
        default=5.0, gt=0, le=60,
        description="Seconds to wait for a cancelled editor before killing it",
    )

    def resolve_command(self, environ: Optional[Mapping[str, str]] = None) -> List[str]:
        """
        Resolve the editor argv.

        Order: ``visual`` (or $VISUAL), then ``editor`` (or $EDITOR), then the
        platform default. Empty values are skipped.
        """
        env = os.environ if environ is None else environ
        candidates = (
            self.visual,
            env.get("VISUAL"),
            self.editor,
            env.get("EDITOR"),
            self.default_command,
        )
        for candidate in candidates:
            if candidate and candidate.strip():
                return shlex.split(candidate, posix=os.name != "nt")
        return [_platform_default_editor()]


class ValidationConfig(BaseModel):
    """Capability validation policy."""

    block_on_violation: bool = Field(
        default=False, description="Refuse to save while violations remain"
    )
    validate_on_save: bool = Field(default=True, description="Validate devices before saving")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    file: Optional[str] = Field(default=None, description="Log file path")
    rotation: str = Field(default="10 MB", description="Log file rotation threshold")
    retention: str = Field(default="30 days", description="Rotated log retention")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()


class Config(BaseModel):
    """Main configuration class."""

    libvirt: LibvirtConfig = Field(default_factory=LibvirtConfig)
    editor: EditorConfig = Field(default_factory=EditorConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml_file(cls, file_path: str) -> "Config":
        """Load configuration from YAML file."""
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file {file_path}: {e}",
                details={"file": file_path},
            ) from e

        if data is not None and not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file {file_path} must contain a mapping",
                details={"file": file_path},
            )
        return cls._build(data or {}, file_path)

    @classmethod
    def _build(cls, data: Dict[str, Any], source: str) -> "Config":
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid configuration from {source}: {e}",
                details={"source": source, "errors": e.errors()},
            ) from e

    @staticmethod
    def _env_data() -> Dict[str, Dict[str, Any]]:
        """Collect configuration values present in the environment."""
        config_data: Dict[str, Dict[str, Any]] = {}

        # Libvirt configuration
        if uri := os.getenv("LIBVIRT_URI"):
            config_data.setdefault("libvirt", {})["uri"] = uri
        if timeout := os.getenv("LIBVIRT_TIMEOUT"):
            try:
                config_data.setdefault("libvirt", {})["timeout"] = int(timeout)
            except ValueError as e:
                raise ConfigurationError(
                    f"LIBVIRT_TIMEOUT must be an integer, got {timeout!r}",
                    details={"variable": "LIBVIRT_TIMEOUT"},
                ) from e
        if readonly := os.getenv("LIBVIRT_READONLY"):
            config_data.setdefault("libvirt", {})["readonly"] = _env_flag(readonly)

        # Editor configuration
        if visual := os.getenv("VISUAL"):
            config_data.setdefault("editor", {})["visual"] = visual
        if editor := os.getenv("EDITOR"):
            config_data.setdefault("editor", {})["editor"] = editor
        if temp_dir := os.getenv("VMM_TEMP_DIR"):
            config_data.setdefault("editor", {})["temp_dir"] = temp_dir

        # Validation configuration
        if block := os.getenv("VMM_BLOCK_ON_VIOLATION"):
            config_data.setdefault("validation", {})["block_on_violation"] = _env_flag(block)

        # Logging configuration
        if log_level := os.getenv("VMM_LOG_LEVEL"):
            config_data.setdefault("logging", {})["level"] = log_level
        if log_file := os.getenv("VMM_LOG_FILE"):
            config_data.setdefault("logging", {})["file"] = log_file

        return config_data

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls._build(cls._env_data(), "environment")

    @classmethod
    def load(cls, config_file: Optional[str] = None) -> "Config":
        """
        Load configuration from multiple sources with precedence:
        1. Environment variables
        2. YAML file (if provided and present)
        3. Default values
        """
        data: Dict[str, Any] = {}

        if config_file:
            try:
                data = cls.from_yaml_file(config_file).model_dump()
            except FileNotFoundError:
                # Missing file falls back to defaults
                pass

        for section, values in cls._env_data().items():
            data.setdefault(section, {}).update(values)

        return cls._build(data, config_file or "environment")

    def to_yaml_file(self, file_path: str) -> None:
        """Save configuration to YAML file."""
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False, indent=2)
