"""Tests for configuration management."""

import pytest
import yaml
from pydantic import ValidationError

from vmm_hardware.config import (
    Config,
    EditorConfig,
    LibvirtConfig,
    LoggingConfig,
    ValidationConfig,
)
from vmm_hardware.exceptions import ConfigurationError

ENV_VARS = [
    "LIBVIRT_URI",
    "LIBVIRT_TIMEOUT",
    "LIBVIRT_READONLY",
    "VISUAL",
    "EDITOR",
    "VMM_TEMP_DIR",
    "VMM_BLOCK_ON_VIOLATION",
    "VMM_LOG_LEVEL",
    "VMM_LOG_FILE",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every variable the config reads."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLibvirtConfig:
    """Tests for LibvirtConfig."""

    def test_default_config(self):
        """Test default configuration values."""
        config = LibvirtConfig()
        assert config.uri == "qemu:///system"
        assert config.timeout == 30
        assert config.readonly is False

    def test_timeout_validation(self):
        """Test timeout validation."""
        with pytest.raises(ValidationError):
            LibvirtConfig(timeout=0)

        with pytest.raises(ValidationError):
            LibvirtConfig(timeout=500)


class TestEditorConfig:
    """Tests for EditorConfig."""

    def test_visual_wins(self):
        config = EditorConfig(visual="code --wait", editor="nano")
        assert config.resolve_command({"VISUAL": "emacs", "EDITOR": "vim"}) == ["code", "--wait"]

    def test_env_visual_before_editor_field(self):
        config = EditorConfig(editor="nano")
        assert config.resolve_command({"VISUAL": "emacs -nw"}) == ["emacs", "-nw"]

    def test_editor_field_before_env_editor(self):
        config = EditorConfig(editor="nano")
        assert config.resolve_command({"EDITOR": "vim"}) == ["nano"]

    def test_env_editor(self):
        assert EditorConfig().resolve_command({"EDITOR": "vim"}) == ["vim"]

    def test_blank_values_skipped(self):
        config = EditorConfig(visual="  ", default_command="ed")
        assert config.resolve_command({"VISUAL": "", "EDITOR": " "}) == ["ed"]

    def test_platform_default(self):
        command = EditorConfig().resolve_command({})
        assert command in (["vi"], ["notepad"])

    def test_terminate_timeout_validation(self):
        with pytest.raises(ValidationError):
            EditorConfig(terminate_timeout=0)


class TestValidationConfig:
    """Tests for ValidationConfig."""

    def test_default_config(self):
        config = ValidationConfig()
        assert config.block_on_violation is False
        assert config.validate_on_save is True


class TestLoggingConfig:
    """Tests for LoggingConfig."""

    def test_default_config(self):
        """Test default configuration values."""
        config = LoggingConfig()
        assert config.level == "INFO"
        assert config.file is None
        assert config.rotation == "10 MB"
        assert config.retention == "30 days"

    def test_log_level_validation(self):
        """Test log level validation."""
        assert LoggingConfig(level="debug").level == "DEBUG"
        assert LoggingConfig(level="SUCCESS").level == "SUCCESS"

        with pytest.raises(ValidationError):
            LoggingConfig(level="INVALID")


class TestConfig:
    """Tests for main Config class."""

    def test_default_config(self):
        """Test default configuration."""
        config = Config()
        assert isinstance(config.libvirt, LibvirtConfig)
        assert isinstance(config.editor, EditorConfig)
        assert isinstance(config.validation, ValidationConfig)
        assert isinstance(config.logging, LoggingConfig)

    def test_from_yaml_file(self, tmp_path):
        """Test loading from YAML file."""
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({
            "libvirt": {"uri": "qemu+ssh://host/system", "timeout": 60},
            "editor": {"visual": "code --wait"},
            "validation": {"block_on_violation": True},
            "logging": {"level": "DEBUG"},
        }))

        config = Config.from_yaml_file(str(path))
        assert config.libvirt.uri == "qemu+ssh://host/system"
        assert config.libvirt.timeout == 60
        assert config.editor.visual == "code --wait"
        assert config.validation.block_on_violation is True
        assert config.logging.level == "DEBUG"

    def test_empty_yaml_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert Config.from_yaml_file(str(path)) == Config()

    def test_from_yaml_file_not_found(self):
        """Test loading from non-existent YAML file."""
        with pytest.raises(FileNotFoundError):
            Config.from_yaml_file("/nonexistent/config.yaml")

    def test_from_env(self, clean_env):
        """Test loading from environment variables."""
        clean_env.setenv("LIBVIRT_URI", "qemu:///session")
        clean_env.setenv("LIBVIRT_TIMEOUT", "45")
        clean_env.setenv("LIBVIRT_READONLY", "true")
        clean_env.setenv("VISUAL", "code --wait")
        clean_env.setenv("EDITOR", "vim")
        clean_env.setenv("VMM_TEMP_DIR", "/var/tmp")
        clean_env.setenv("VMM_BLOCK_ON_VIOLATION", "yes")
        clean_env.setenv("VMM_LOG_LEVEL", "warning")
        clean_env.setenv("VMM_LOG_FILE", "/tmp/vmm.log")

        config = Config.from_env()
        assert config.libvirt.uri == "qemu:///session"
        assert config.libvirt.timeout == 45
        assert config.libvirt.readonly is True
        assert config.editor.visual == "code --wait"
        assert config.editor.editor == "vim"
        assert config.editor.temp_dir == "/var/tmp"
        assert config.validation.block_on_violation is True
        assert config.logging.level == "WARNING"
        assert config.logging.file == "/tmp/vmm.log"

    def test_env_flag_false(self, clean_env):
        clean_env.setenv("LIBVIRT_READONLY", "off")
        assert Config.from_env().libvirt.readonly is False

    def test_load_with_file_and_env(self, tmp_path, clean_env):
        """Test environment variables override the file."""
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({
            "libvirt": {"uri": "qemu:///system", "timeout": 20},
            "logging": {"level": "DEBUG"},
        }))
        clean_env.setenv("LIBVIRT_TIMEOUT", "90")

        config = Config.load(str(path))
        assert config.libvirt.uri == "qemu:///system"
        assert config.libvirt.timeout == 90
        assert config.logging.level == "DEBUG"

    def test_load_missing_file(self, clean_env):
        """Test a missing file falls back to defaults."""
        assert Config.load("/nonexistent/config.yaml") == Config()

    def test_to_yaml_file(self, tmp_path):
        """Test saving to YAML file."""
        config = Config()
        config.libvirt.uri = "qemu:///session"
        config.editor.visual = "nano"
        path = tmp_path / "nested" / "config.yaml"

        config.to_yaml_file(str(path))

        data = yaml.safe_load(path.read_text())
        assert data["libvirt"]["uri"] == "qemu:///session"
        assert data["editor"]["visual"] == "nano"
        assert Config.from_yaml_file(str(path)) == config


class TestConfigErrors:
    """Tests for configuration errors surfacing as ConfigurationError."""

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("libvirt: [uri: qemu:///system\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            Config.from_yaml_file(str(path))

    def test_invalid_value_in_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"libvirt": {"timeout": 0}}))
        with pytest.raises(ConfigurationError) as exc_info:
            Config.from_yaml_file(str(path))
        assert exc_info.value.details["source"] == str(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            Config.from_yaml_file(str(path))

    def test_bad_timeout_variable(self, clean_env):
        clean_env.setenv("LIBVIRT_TIMEOUT", "soon")
        with pytest.raises(ConfigurationError, match="LIBVIRT_TIMEOUT"):
            Config.from_env()

    def test_bad_log_level_variable(self, clean_env):
        clean_env.setenv("VMM_LOG_LEVEL", "LOUD")
        with pytest.raises(ConfigurationError):
            Config.load()
