"""
Configuration Management System for Vigil
Handles environment-based configuration, file overrides and validation.
"""
import os
import json
from typing import Optional, Dict, Any, List
from pathlib import Path
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file
load_dotenv()

from exceptions import ConfigurationError

DEFAULT_RULE_TYPES = ["severity", "category", "impact", "source"]


@dataclass
class DatabaseConfig:
    """Database configuration settings."""
    path: str = "vigil_rules.db"
    connection_timeout: int = 30
    max_connections: int = 5


@dataclass
class APIConfig:
    """API configuration settings."""
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class SystemConfig:
    """System-wide configuration settings."""
    environment: str = "development"
    log_level: str = "INFO"
    version: str = "1.0.0"


@dataclass
class ClassificationConfig:
    """Classification rule engine configuration settings."""
    rule_types: List[str] = field(default_factory=lambda: list(DEFAULT_RULE_TYPES))
    default_processing_order: Optional[List[str]] = None
    default_priority: int = 100
    default_confidence: float = 1.0
    underperformer_threshold: float = 0.70
    stale_window_days: int = 30
    top_performers_limit: int = 5
    record_tester_runs: bool = False
    performance_write_through: bool = True
    seed_rules_path: Optional[str] = None

    @property
    def processing_order(self) -> List[str]:
        """Initial processing order; falls back to the declared rule types."""
        if self.default_processing_order:
            return list(self.default_processing_order)
        return list(self.rule_types)


@dataclass
class VigilConfig:
    """Complete configuration for the Vigil engine."""
    system: SystemConfig = field(default_factory=SystemConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    api: APIConfig = field(default_factory=APIConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)

    def validate(self) -> None:
        """
        Validate configuration settings.

        Raises:
            ConfigurationError: If configuration is invalid
        """
        cls_cfg = self.classification

        if not cls_cfg.rule_types:
            raise ConfigurationError(
                "At least one rule type must be configured",
                component="ConfigManager"
            )

        if len(set(cls_cfg.rule_types)) != len(cls_cfg.rule_types):
            raise ConfigurationError(
                f"Duplicate rule types configured: {cls_cfg.rule_types}",
                component="ConfigManager"
            )

        order = cls_cfg.processing_order
        unknown = [t for t in order if t not in cls_cfg.rule_types]
        if unknown or len(set(order)) != len(order):
            raise ConfigurationError(
                f"Default processing order must be a duplicate-free subset of {cls_cfg.rule_types}, got {order}",
                component="ConfigManager",
                context={"unknown": unknown}
            )

        if not 0.0 <= cls_cfg.underperformer_threshold <= 1.0:
            raise ConfigurationError(
                f"Underperformer threshold must be between 0 and 1, got {cls_cfg.underperformer_threshold}",
                component="ConfigManager"
            )

        if not 0.0 <= cls_cfg.default_confidence <= 1.0:
            raise ConfigurationError(
                f"Default confidence must be between 0 and 1, got {cls_cfg.default_confidence}",
                component="ConfigManager"
            )

        if cls_cfg.stale_window_days <= 0:
            raise ConfigurationError(
                f"Stale window must be positive, got {cls_cfg.stale_window_days}",
                component="ConfigManager"
            )

        if self.database.max_connections < 1:
            raise ConfigurationError(
                "Database pool needs at least one connection",
                component="ConfigManager"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "system": {
                "environment": self.system.environment,
                "log_level": self.system.log_level,
                "version": self.system.version
            },
            "database": {
                "path": self.database.path,
                "max_connections": self.database.max_connections
            },
            "classification": {
                "rule_types": list(self.classification.rule_types),
                "processing_order": self.classification.processing_order,
                "default_priority": self.classification.default_priority,
                "underperformer_threshold": self.classification.underperformer_threshold,
                "stale_window_days": self.classification.stale_window_days,
                "record_tester_runs": self.classification.record_tester_runs
            }
        }


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('true', '1', 'yes', 'on')


def _parse_list(value: str) -> List[str]:
    return [item.strip().lower() for item in value.split(',') if item.strip()]


class ConfigManager:
    """
    Manages configuration loading from environment variables and files.
    Implements fail-fast principle for invalid configurations.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            config_path: Optional path to JSON config file
        """
        self.config_path = config_path
        self._config: Optional[VigilConfig] = None

    def load(self) -> VigilConfig:
        """
        Load configuration from environment and optional file.
        Priority: Environment Variables > Config File > Defaults

        Returns:
            VigilConfig: Validated configuration

        Raises:
            ConfigurationError: If configuration is invalid
        """
        config = VigilConfig()

        if self.config_path:
            config = self._load_from_file(self.config_path)

        config = self._load_from_environment(config)
        config.validate()

        self._config = config
        return config

    def _load_from_file(self, file_path: str) -> VigilConfig:
        """
        Load configuration from JSON file.

        Raises:
            ConfigurationError: If file cannot be loaded
        """
        path = Path(file_path)
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {file_path}",
                component="ConfigManager"
            )

        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Invalid JSON in configuration file: {e}",
                component="ConfigManager"
            )
        except OSError as e:
            raise ConfigurationError(
                f"Error loading configuration file: {e}",
                component="ConfigManager"
            )

        config = VigilConfig()

        if 'system' in data:
            sys_data = data['system']
            config.system.environment = sys_data.get('environment', config.system.environment)
            config.system.log_level = sys_data.get('log_level', config.system.log_level).upper()

        if 'database' in data:
            db_data = data['database']
            config.database.path = db_data.get('path', config.database.path)
            config.database.max_connections = db_data.get('max_connections', config.database.max_connections)
            config.database.connection_timeout = db_data.get('connection_timeout', config.database.connection_timeout)

        if 'api' in data:
            api_data = data['api']
            config.api.host = api_data.get('host', config.api.host)
            config.api.port = api_data.get('port', config.api.port)
            config.api.cors_origins = api_data.get('cors_origins', config.api.cors_origins)

        if 'classification' in data:
            cls_data = data['classification']
            cls_cfg = config.classification
            if 'rule_types' in cls_data:
                cls_cfg.rule_types = [str(t).lower() for t in cls_data['rule_types']]
            if 'processing_order' in cls_data:
                cls_cfg.default_processing_order = [str(t).lower() for t in cls_data['processing_order']]
            cls_cfg.default_priority = cls_data.get('default_priority', cls_cfg.default_priority)
            cls_cfg.default_confidence = cls_data.get('default_confidence', cls_cfg.default_confidence)
            cls_cfg.underperformer_threshold = cls_data.get('underperformer_threshold', cls_cfg.underperformer_threshold)
            cls_cfg.stale_window_days = cls_data.get('stale_window_days', cls_cfg.stale_window_days)
            cls_cfg.top_performers_limit = cls_data.get('top_performers_limit', cls_cfg.top_performers_limit)
            cls_cfg.record_tester_runs = cls_data.get('record_tester_runs', cls_cfg.record_tester_runs)
            cls_cfg.performance_write_through = cls_data.get(
                'performance_write_through', cls_cfg.performance_write_through
            )
            cls_cfg.seed_rules_path = cls_data.get('seed_rules_path', cls_cfg.seed_rules_path)

        return config

    def _load_from_environment(self, config: VigilConfig) -> VigilConfig:
        """
        Override configuration with environment variables.

        Raises:
            ConfigurationError: If a numeric variable cannot be parsed
        """
        config.system.environment = os.getenv('VIGIL_ENVIRONMENT', config.system.environment)

        log_level = os.getenv('VIGIL_LOG_LEVEL')
        if log_level:
            config.system.log_level = log_level.upper()

        # Database
        db_path = os.getenv('VIGIL_DB_PATH')
        if db_path:
            config.database.path = db_path

        max_conn = os.getenv('VIGIL_DB_MAX_CONNECTIONS')
        if max_conn:
            config.database.max_connections = self._parse_int('VIGIL_DB_MAX_CONNECTIONS', max_conn)

        # Classification
        cls_cfg = config.classification

        rule_types = os.getenv('VIGIL_RULE_TYPES')
        if rule_types:
            cls_cfg.rule_types = _parse_list(rule_types)

        order = os.getenv('VIGIL_PROCESSING_ORDER')
        if order:
            cls_cfg.default_processing_order = _parse_list(order)

        default_priority = os.getenv('VIGIL_DEFAULT_PRIORITY')
        if default_priority:
            cls_cfg.default_priority = self._parse_int('VIGIL_DEFAULT_PRIORITY', default_priority)

        threshold = os.getenv('VIGIL_UNDERPERFORMER_THRESHOLD')
        if threshold:
            try:
                cls_cfg.underperformer_threshold = float(threshold)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid underperformer threshold: {threshold}",
                    component="ConfigManager"
                )

        window = os.getenv('VIGIL_STALE_WINDOW_DAYS')
        if window:
            cls_cfg.stale_window_days = self._parse_int('VIGIL_STALE_WINDOW_DAYS', window)

        record_tester = os.getenv('VIGIL_RECORD_TESTER_RUNS')
        if record_tester:
            cls_cfg.record_tester_runs = _parse_bool(record_tester)

        write_through = os.getenv('VIGIL_PERFORMANCE_WRITE_THROUGH')
        if write_through:
            cls_cfg.performance_write_through = _parse_bool(write_through)

        seed_path = os.getenv('VIGIL_SEED_RULES_PATH')
        if seed_path:
            cls_cfg.seed_rules_path = seed_path

        # API & Server
        api_host = os.getenv('API_HOST')
        if api_host:
            config.api.host = api_host

        api_port = os.getenv('API_PORT')
        if api_port:
            config.api.port = self._parse_int('API_PORT', api_port)

        cors = os.getenv('CORS_ORIGINS')
        if cors:
            config.api.cors_origins = [o.strip() for o in cors.split(',')]

        return config

    @staticmethod
    def _parse_int(name: str, value: str) -> int:
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(
                f"Invalid integer for {name}: {value}",
                component="ConfigManager"
            )

    @property
    def config(self) -> VigilConfig:
        """
        Get current configuration.

        Raises:
            ConfigurationError: If configuration not loaded
        """
        if self._config is None:
            raise ConfigurationError(
                "Configuration not loaded. Call load() first.",
                component="ConfigManager"
            )
        return self._config


# Singleton instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(config_path: Optional[str] = None) -> ConfigManager:
    """
    Get singleton ConfigManager instance.

    Args:
        config_path: Optional path to configuration file

    Returns:
        ConfigManager: Singleton instance
    """
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager(config_path)
    return _config_manager


def load_config(config_path: Optional[str] = None) -> VigilConfig:
    """
    Load and validate configuration.

    Args:
        config_path: Optional path to configuration file

    Returns:
        VigilConfig: Validated configuration

    Raises:
        ConfigurationError: If configuration is invalid
    """
    manager = get_config_manager(config_path)
    return manager.load()
