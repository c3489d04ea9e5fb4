"""
Preprocessor Configuration

Central configuration for parsing, category mapping and batch processing.
Values can be overridden from environment variables via PreprocessorConfig.from_env().
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .exceptions import ConfigurationError


PACKAGE_DATA_DIR = Path(__file__).resolve().parent.parent / "category_mapping" / "data"


@dataclass
class MappingConfig:
    """Category mapping thresholds"""
    fuzzy_threshold: float = 0.82     # Minimum text similarity for a fuzzy hit
    minimum_confidence: float = 0.70  # Minimum blended confidence for a fuzzy hit
    max_suggestions: int = 5          # Ranked candidates kept per unmapped entry
    enable_learning: bool = True
    learning_threshold: int = 3       # Unmapped count before suggestions are surfaced
    sample_cap: int = 5               # Sample products kept per unmapped entry


@dataclass
class ProcessingConfig:
    """Batch processing settings"""
    batch_size: int = 1000
    memory_checkpoint: bool = True    # gc.collect() after each batch
    max_errors_reported: int = 100    # Reject records kept per shop run


@dataclass
class StoreSettings:
    """Settings for a specific store"""
    enabled: bool = True
    # Bucket used when a product resolves to "Other" (None = keep "Other")
    other_override_path: Optional[List[str]] = None


@dataclass
class DataPaths:
    """Locations of taxonomy and rule files"""
    taxonomy_file: Path = PACKAGE_DATA_DIR / "categories.json"
    rules_dir: Path = PACKAGE_DATA_DIR / "shops"


@dataclass
class PreprocessorConfig:
    """Main preprocessor configuration"""
    mapping: MappingConfig = field(default_factory=MappingConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    paths: DataPaths = field(default_factory=DataPaths)
    log_level: str = "INFO"

    # Per-store settings
    stores: Dict[str, StoreSettings] = field(default_factory=dict)

    def __post_init__(self):
        """Initialize default store settings"""
        if not self.stores:
            self.stores = {
                'freshful': StoreSettings(other_override_path=["Mama & copilul"]),
                'auchan': StoreSettings(),
                'carrefour': StoreSettings(),
                'kaufland': StoreSettings(),
                'mega': StoreSettings(),
                'lidl': StoreSettings(),
            }

    def store(self, store_id: str) -> StoreSettings:
        """Settings for a store, defaults when not configured."""
        return self.stores.get(store_id) or StoreSettings()

    def validate(self) -> "PreprocessorConfig":
        """
        Check value ranges.

        Raises:
            ConfigurationError: On the first out-of-range value
        """
        if self.processing.batch_size <= 0:
            raise ConfigurationError('batch_size', self.processing.batch_size,
                                     "must be greater than 0")
        if not 0 <= self.mapping.fuzzy_threshold <= 1:
            raise ConfigurationError('fuzzy_threshold', self.mapping.fuzzy_threshold,
                                     "must be between 0 and 1")
        if not 0 <= self.mapping.minimum_confidence <= 1:
            raise ConfigurationError('minimum_confidence', self.mapping.minimum_confidence,
                                     "must be between 0 and 1")
        if self.mapping.max_suggestions < 1:
            raise ConfigurationError('max_suggestions', self.mapping.max_suggestions,
                                     "must be at least 1")
        if self.mapping.sample_cap < 1:
            raise ConfigurationError('sample_cap', self.mapping.sample_cap,
                                     "must be at least 1")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PreprocessorConfig":
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            Validated configuration

        Example:
            >>> PreprocessorConfig.from_env({'PREPROCESS_BATCH_SIZE': '500'}).processing.batch_size
            500
        """
        env = os.environ if environ is None else environ
        config = cls()

        config.processing.batch_size = _int(env, 'PREPROCESS_BATCH_SIZE', config.processing.batch_size)
        config.mapping.fuzzy_threshold = _float(env, 'MAPPING_FUZZY_THRESHOLD', config.mapping.fuzzy_threshold)
        config.mapping.minimum_confidence = _float(env, 'MAPPING_MIN_CONFIDENCE', config.mapping.minimum_confidence)
        config.mapping.max_suggestions = _int(env, 'MAPPING_MAX_SUGGESTIONS', config.mapping.max_suggestions)
        config.mapping.learning_threshold = _int(env, 'MAPPING_LEARNING_THRESHOLD', config.mapping.learning_threshold)
        if 'MAPPING_ENABLE_LEARNING' in env:
            config.mapping.enable_learning = env['MAPPING_ENABLE_LEARNING'].strip().lower() != 'false'
        if env.get('PREPROCESS_TAXONOMY_FILE'):
            config.paths.taxonomy_file = Path(env['PREPROCESS_TAXONOMY_FILE'])
        if env.get('PREPROCESS_RULES_DIR'):
            config.paths.rules_dir = Path(env['PREPROCESS_RULES_DIR'])
        config.log_level = env.get('LOG_LEVEL', config.log_level).upper()

        return config.validate()


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(name, raw, "not an integer")


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(name, raw, "not a number")


def configure_logging(level: str = "INFO"):
    """Set up root logging the way the batch jobs expect it."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    )


# Default configuration instance
default_config = PreprocessorConfig()
