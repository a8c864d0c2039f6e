"""
Pipeline Configuration - Centralized Settings
==============================================

All configurable parameters of the capture pipeline in one place.
Supports environment variable overrides and YAML/JSON config files.

Usage:
    from motomind_vision.config import get_config
    config = get_config()
    print(config.confidence.min_confidence)

Environment Variables:
    MOTOMIND_MIN_CONFIDENCE=0.9
    MOTOMIND_MAX_RETRIES=5
    MOTOMIND_DECODE_PROVIDER=nhtsa
    MOTOMIND_LOG_LEVEL=DEBUG

Author: MotoMind Project
"""

import os
import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Dict, Any, Union

import yaml

logger = logging.getLogger(__name__)


def _get_env_float(key: str, default: float) -> float:
    """Get float from environment variable."""
    value = os.environ.get(key)
    if value is not None:
        try:
            return float(value)
        except ValueError:
            logger.warning(f"Invalid float for {key}: {value}, using default {default}")
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get int from environment variable."""
    value = os.environ.get(key)
    if value is not None:
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Invalid int for {key}: {value}, using default {default}")
    return default


def _get_env_bool(key: str, default: bool) -> bool:
    """Get bool from environment variable."""
    value = os.environ.get(key)
    if value is not None:
        return value.lower() in ('true', '1', 'yes', 'on')
    return default


def _get_env_str(key: str, default: str) -> str:
    """Get string from environment variable."""
    return os.environ.get(key, default)


@dataclass
class ValidationConfig:
    """VIN validation defaults."""

    validate_check_digit: bool = field(
        default_factory=lambda: _get_env_bool('MOTOMIND_VALIDATE_CHECK_DIGIT', True)
    )
    strict_mode: bool = field(
        default_factory=lambda: _get_env_bool('MOTOMIND_STRICT_MODE', False)
    )
    allow_lowercase: bool = True


@dataclass
class ConfidenceConfig:
    """Confidence scoring and retry defaults."""

    min_confidence: float = field(
        default_factory=lambda: _get_env_float('MOTOMIND_MIN_CONFIDENCE', 0.85)
    )
    max_retries: int = field(
        default_factory=lambda: _get_env_int('MOTOMIND_MAX_RETRIES', 3)
    )
    strict_mode: bool = field(
        default_factory=lambda: _get_env_bool('MOTOMIND_STRICT_MODE', False)
    )
    retry_delay: float = field(
        default_factory=lambda: _get_env_float('MOTOMIND_RETRY_DELAY', 1.0)
    )  # seconds
    retry_strategy: str = 'with-delay'

    # Per capture type overrides, e.g. {'vin': 0.95}
    thresholds: Dict[str, float] = field(default_factory=dict)


@dataclass
class DecodingConfig:
    """VIN decoding provider configuration."""

    api_provider: str = field(
        default_factory=lambda: _get_env_str('MOTOMIND_DECODE_PROVIDER', 'offline')
    )
    custom_api_url: Optional[str] = field(
        default_factory=lambda: os.environ.get('MOTOMIND_DECODE_API_URL')
    )
    api_key: Optional[str] = field(
        default_factory=lambda: os.environ.get('MOTOMIND_DECODE_API_KEY')
    )
    nhtsa_base_url: str = 'https://vpic.nhtsa.dot.gov/api'

    cache_results: bool = field(
        default_factory=lambda: _get_env_bool('MOTOMIND_DECODE_CACHE', True)
    )
    cache_duration: float = field(
        default_factory=lambda: _get_env_float('MOTOMIND_DECODE_CACHE_TTL', 3600.0)
    )  # seconds
    cache_max_entries: int = 500
    timeout: float = field(
        default_factory=lambda: _get_env_float('MOTOMIND_DECODE_TIMEOUT', 10.0)
    )  # seconds
    mock_latency: float = 0.5


@dataclass
class CaptureConfig:
    """Capture orchestration settings."""

    # Hard ceiling on acquisition attempts per session, whatever plugins decide
    max_attempts: int = field(
        default_factory=lambda: _get_env_int('MOTOMIND_MAX_ATTEMPTS', 10)
    )
    batch_concurrency: int = field(
        default_factory=lambda: _get_env_int('MOTOMIND_BATCH_CONCURRENCY', 4)
    )

    # Image quality analysis
    preprocess_enabled: bool = True
    clahe_clip_limit: float = 2.0
    low_contrast_threshold: float = 50.0
    sharpness_reference: float = 300.0  # Laplacian variance mapped to a full sharpness score


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = field(
        default_factory=lambda: _get_env_str('MOTOMIND_LOG_LEVEL', 'INFO')
    )
    format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    date_format: str = '%Y-%m-%d %H:%M:%S'

    # File logging (optional)
    log_file: Optional[str] = field(
        default_factory=lambda: os.environ.get('MOTOMIND_LOG_FILE')
    )


@dataclass
class PipelineConfig:
    """Complete pipeline configuration."""

    validation: ValidationConfig = field(default_factory=ValidationConfig)
    confidence: ConfidenceConfig = field(default_factory=ConfidenceConfig)
    decoding: DecodingConfig = field(default_factory=DecodingConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    def save(self, path: Union[str, Path]):
        """Save configuration to a YAML or JSON file (chosen by suffix)."""
        path = Path(path)
        with open(path, 'w') as f:
            if path.suffix in ('.yaml', '.yml'):
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False)
            else:
                json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'PipelineConfig':
        """Load configuration from a YAML or JSON file."""
        path = Path(path)
        with open(path) as f:
            if path.suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        config = cls()

        for section in ('validation', 'confidence', 'decoding', 'capture', 'logging'):
            target = getattr(config, section)
            for key, value in (data.get(section) or {}).items():
                if hasattr(target, key):
                    setattr(target, key, value)
                else:
                    logger.warning(f"Ignoring unknown config key {section}.{key}")

        return config


# Global configuration instance (singleton pattern)
_config: Optional[PipelineConfig] = None


def get_config() -> PipelineConfig:
    """
    Get the global configuration instance.

    Creates a new instance on first call, returns cached instance thereafter.
    Set MOTOMIND_CONFIG_FILE to load settings from a file.
    """
    global _config
    if _config is None:
        config_file = os.environ.get('MOTOMIND_CONFIG_FILE')
        _config = PipelineConfig.load(config_file) if config_file else PipelineConfig()
        _setup_logging(_config.logging)
    return _config


def reset_config():
    """Reset configuration to defaults (useful for testing)."""
    global _config
    _config = None


def _setup_logging(config: LoggingConfig):
    """Configure logging based on settings."""
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]

    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=level,
        format=config.format,
        datefmt=config.date_format,
        handlers=handlers,
    )
