"""Configuration system for ragdocs."""

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".rag" / "config.yaml"
DEFAULT_DATABASE_PATH = Path.home() / ".rag" / "db.sqlite"


class StorageConfig(BaseModel):
    """Corpus database settings."""
    database_path: str = str(DEFAULT_DATABASE_PATH)

    model_config = ConfigDict(from_attributes=True, frozen=True)


class EmbeddingConfig(BaseModel):
    """Embedding backend settings."""
    host: str = "http://localhost:11434"
    model: str = "nomic-embed-text"
    timeout: float = 60.0
    max_retries: int = 3
    retry_delay: float = 1.0
    batch_size: int = 16
    dimension: Optional[int] = None
    chars_per_token: float = 3.0

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('timeout', 'retry_delay', 'chars_per_token')
    @classmethod
    def validate_positive_float(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator('max_retries', 'batch_size')
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @field_validator('dimension')
    @classmethod
    def validate_dimension(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("dimension must be positive")
        return v


class ChunkingConfig(BaseModel):
    """Markdown chunking settings."""
    max_tokens: int = 512

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('max_tokens')
    @classmethod
    def validate_max_tokens(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_tokens must be positive")
        return v


class SyncConfig(BaseModel):
    """Sync engine settings."""
    workers: int = 4

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('workers')
    @classmethod
    def validate_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("workers must be at least 1")
        return v


class GitConfig(BaseModel):
    """Repository checkout settings."""
    timeout: float = 300.0
    depth: int = 1
    max_retries: int = 3
    retry_delay: float = 2.0

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('timeout', 'retry_delay')
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator('depth', 'max_retries')
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "WARNING"
    file_path: Optional[str] = None
    console_enabled: bool = True

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return v_upper


class RagDocsConfig(BaseModel):
    """Main ragdocs configuration.

    Loaded once at startup and passed explicitly to every component.
    """
    storage: StorageConfig = Field(default_factory=StorageConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def database_path(self) -> Path:
        return Path(self.storage.database_path).expanduser()


class ConfigLoader:
    """Load and validate configuration from YAML files."""

    @staticmethod
    def initialize(config_path: Optional[str] = None) -> RagDocsConfig:
        """Load the process configuration, writing defaults on first run.

        Args:
            config_path: Path to the config file (defaults to ~/.rag/config.yaml)

        Returns:
            Validated, immutable RagDocsConfig

        Raises:
            ConfigurationError: If the file cannot be read or validated
        """
        path = Path(config_path).expanduser() if config_path else DEFAULT_CONFIG_PATH
        if not path.exists():
            logger.info(f"Config file not found, writing defaults to {path}")
            config = get_default_config()
            ConfigLoader.save_config(config, str(path))
            return config
        return ConfigLoader.load_config(str(path))

    @staticmethod
    def load_config(config_path: str) -> RagDocsConfig:
        """Load configuration from a YAML file.

        Raises:
            ConfigurationError: If config loading or validation fails
        """
        config_dict = ConfigLoader._load_yaml(config_path)
        try:
            config = RagDocsConfig(**config_dict)
        except ValidationError as e:
            logger.error(f"Invalid configuration in {config_path}: {e}")
            raise ConfigurationError(
                f"Invalid configuration in {config_path}: {e}",
                operation="config",
                original_exception=e,
            )
        logger.debug(f"Configuration loaded from {config_path}")
        return config

    @staticmethod
    def _load_yaml(path: str) -> dict:
        """Load YAML file."""
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {path}", operation="config")
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in {path}: {e}", operation="config", original_exception=e
            )
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file {path} must contain a mapping", operation="config"
            )
        return data

    @staticmethod
    def save_config(config: RagDocsConfig, output_path: str):
        """Save configuration to YAML file."""
        try:
            config_dict = config.model_dump()
            Path(output_path).parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, 'w') as f:
                yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False)
            logger.info(f"Configuration saved to {output_path}")
        except OSError as e:
            logger.error(f"Failed to save configuration: {e}")
            raise ConfigurationError(
                f"Failed to save configuration: {e}", operation="config", original_exception=e
            )


def get_default_config() -> RagDocsConfig:
    """Get default configuration."""
    return RagDocsConfig()
