"""
Configuration System

Manages loan workflow configuration from multiple sources:
1. Default values
2. Configuration file (loan_workflow.yaml)
3. Environment variables (highest priority)
"""

from typing import Any, Dict, Optional
from pathlib import Path
import logging
import os
import yaml
from dataclasses import dataclass, field, asdict

from .errors import ConfigurationError
from .schema import APPROVAL_GATED_STAGES, parse_stage
from .writer import STRATEGIES_BY_NAME, DEFAULT_STRATEGIES


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class StoreConfig:
    """Record store configuration"""
    db_path: str = "loan_workflow.db"
    busy_timeout_ms: int = 5000


@dataclass
class AdvisoryConfig:
    """Advisory (intent and audit) store configuration"""
    intent_store_enabled: bool = True
    audit_store_enabled: bool = True
    strict_intents: bool = False
    max_recorded_failures: int = 1000


@dataclass
class WriterConfig:
    """Resilient status writer configuration"""
    strategies: list = field(default_factory=lambda: [s.name for s in DEFAULT_STRATEGIES])
    application_id_prefix: str = "LA"


@dataclass
class ApprovalConfig:
    """Approval gate configuration"""
    db_path: str = "loan_approvals.db"
    gated_stages: list = field(default_factory=lambda: sorted(s.value for s in APPROVAL_GATED_STAGES))


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class EngineConfig:
    """Complete loan workflow configuration"""
    store: StoreConfig = field(default_factory=StoreConfig)
    advisory: AdvisoryConfig = field(default_factory=AdvisoryConfig)
    writer: WriterConfig = field(default_factory=WriterConfig)
    approval: ApprovalConfig = field(default_factory=ApprovalConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Create configuration from dictionary"""
        config = cls()

        try:
            if "store" in data:
                config.store = StoreConfig(**data["store"])
            if "advisory" in data:
                config.advisory = AdvisoryConfig(**data["advisory"])
            if "writer" in data:
                config.writer = WriterConfig(**data["writer"])
            if "approval" in data:
                config.approval = ApprovalConfig(**data["approval"])
            if "logging" in data:
                config.logging = LoggingConfig(**data["logging"])
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        return config


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """
    Configuration manager with multiple source support

    Load priority (highest to lowest):
    1. Environment variables
    2. Configuration file
    3. Defaults
    """

    def __init__(self, config_file: Optional[Path] = None):
        """
        Initialize configuration manager

        Args:
            config_file: Optional path to configuration file
        """
        self.config_file = Path(config_file) if config_file else Path("loan_workflow.yaml")
        self._config = self._load_config()

    def _load_config(self) -> EngineConfig:
        """
        Load configuration from all sources

        Returns:
            Complete configuration
        """
        config = EngineConfig()

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    file_data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Failed to load config file {self.config_file}: {e}") from e
            if file_data:
                config = EngineConfig.from_dict(file_data)

        return self._apply_env_overrides(config)

    def _apply_env_overrides(self, config: EngineConfig) -> EngineConfig:
        """
        Apply environment variable overrides

        Environment variables format: LOAN_WORKFLOW_<SECTION>_<KEY>
        Example: LOAN_WORKFLOW_STORE_DB_PATH=/var/lib/loans.db
        """
        if db_path := os.getenv("LOAN_WORKFLOW_STORE_DB_PATH"):
            config.store.db_path = db_path
        if timeout := os.getenv("LOAN_WORKFLOW_STORE_BUSY_TIMEOUT_MS"):
            config.store.busy_timeout_ms = int(timeout)

        if intents := os.getenv("LOAN_WORKFLOW_ADVISORY_INTENT_STORE_ENABLED"):
            config.advisory.intent_store_enabled = _env_bool(intents)
        if audit := os.getenv("LOAN_WORKFLOW_ADVISORY_AUDIT_STORE_ENABLED"):
            config.advisory.audit_store_enabled = _env_bool(audit)
        if strict := os.getenv("LOAN_WORKFLOW_ADVISORY_STRICT_INTENTS"):
            config.advisory.strict_intents = _env_bool(strict)

        if strategies := os.getenv("LOAN_WORKFLOW_WRITER_STRATEGIES"):
            config.writer.strategies = [s.strip() for s in strategies.split(",") if s.strip()]
        if prefix := os.getenv("LOAN_WORKFLOW_WRITER_APPLICATION_ID_PREFIX"):
            config.writer.application_id_prefix = prefix

        if approval_db := os.getenv("LOAN_WORKFLOW_APPROVAL_DB_PATH"):
            config.approval.db_path = approval_db

        if log_level := os.getenv("LOAN_WORKFLOW_LOG_LEVEL"):
            config.logging.level = log_level
        if log_file := os.getenv("LOAN_WORKFLOW_LOG_FILE"):
            config.logging.file = log_file

        return config

    def get(self, section: Optional[str] = None) -> Any:
        """
        Get configuration section or entire config

        Args:
            section: Optional section name (store, advisory, etc.)
        """
        if section is None:
            return self._config

        return getattr(self._config, section, None)

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate configuration

        Returns:
            Tuple of (is_valid, errors)
        """
        errors = []

        if self._config.store.busy_timeout_ms < 0:
            errors.append("Store busy timeout must be non-negative")

        if not self._config.writer.strategies:
            errors.append("At least one persistence strategy is required")
        unknown = [s for s in self._config.writer.strategies if s not in STRATEGIES_BY_NAME]
        if unknown:
            errors.append(f"Unknown persistence strategies: {', '.join(unknown)}")
        if not self._config.writer.application_id_prefix:
            errors.append("Application id prefix must not be empty")

        bad_stages = [s for s in self._config.approval.gated_stages if parse_stage(s) is None]
        if bad_stages:
            errors.append(f"Unknown gated stages: {', '.join(bad_stages)}")

        if self._config.advisory.max_recorded_failures < 1:
            errors.append("Advisory failure log must keep at least 1 entry")

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self._config.logging.level.upper() not in valid_levels:
            errors.append(f"Logging level must be one of: {', '.join(valid_levels)}")

        return len(errors) == 0, errors

    def reload(self) -> None:
        """Reload configuration from file"""
        self._config = self._load_config()


def configure_logging(config: LoggingConfig) -> None:
    """Configure root logging for command-line use."""
    handlers = [logging.StreamHandler()]
    if config.file:
        handlers.append(logging.FileHandler(config.file))
    logging.basicConfig(
        level=getattr(logging, config.level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
