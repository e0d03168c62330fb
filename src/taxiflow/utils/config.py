# ========================
# src/taxiflow/utils/config.py
# ========================

"""
Configuration Management

Centralized configuration for pipeline runs with environment support.
Every run receives its configuration explicitly; nothing here is read from
the current working directory after construction.
"""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional, Tuple


def _float_tuple(value: str) -> Tuple[float, ...]:
    return tuple(float(part) for part in value.split(',') if part.strip())


class Config:
    """
    Configuration class for the taxi pipeline.
    Supports environment variables and default values.
    """

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration.

        Args:
            config_dict (dict): Optional configuration overrides (keys are case-insensitive)
        """
        # Data Processing Configuration
        self.DEFAULT_CHUNK_SIZE = int(os.getenv('PIPELINE_CHUNK_SIZE', '10000'))
        self.MAX_WORKERS = int(os.getenv('PIPELINE_MAX_WORKERS', '1'))
        self.TIMEOUT_SECONDS = float(os.getenv('PIPELINE_TIMEOUT_SECONDS', '0'))

        # File Paths
        self.DATA_DIR = os.getenv('PIPELINE_DATA_DIR', 'data')
        self.DEFAULT_INPUT_FILE = os.getenv('PIPELINE_INPUT_FILE', 'data/raw/taxi_trips.csv')
        self.DEFAULT_OUTPUT_DIR = os.getenv('PIPELINE_OUTPUT_DIR', 'data/processed')
        self.SCHEMA_FILE = os.getenv('PIPELINE_SCHEMA_FILE', '')
        self.INPUT_DELIMITER = os.getenv('PIPELINE_INPUT_DELIMITER', ',')

        # Data Generation Settings
        self.DEFAULT_SAMPLE_ROWS = int(os.getenv('SAMPLE_ROWS', '10000'))
        self.SAMPLE_ERROR_RATE = float(os.getenv('SAMPLE_ERROR_RATE', '0.05'))

        # Trip Filters
        self.MIN_FARE = float(os.getenv('MIN_FARE', '0'))
        self.MAX_FARE = float(os.getenv('MAX_FARE', '500'))
        self.MAX_TRIP_MINUTES = float(os.getenv('MAX_TRIP_MINUTES', '360'))
        # min_lon, min_lat, max_lon, max_lat
        self.NYC_BOUNDS = _float_tuple(os.getenv('NYC_BOUNDS', '-74.3,40.45,-73.65,40.95'))

        # API Settings
        self.API_HOST = os.getenv('API_HOST', '0.0.0.0')
        self.API_PORT = int(os.getenv('API_PORT', '8000'))
        self.API_MAX_CONCURRENT_JOBS = int(os.getenv('API_MAX_CONCURRENT_JOBS', '3'))

        # Logging Configuration
        self.LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
        self.LOG_DIR = os.getenv('LOG_DIR', 'logs')
        self.LOG_CHUNK_INTERVAL = int(os.getenv('LOG_CHUNK_INTERVAL', '100'))

        # Override with provided config
        if config_dict:
            self._update_from_dict(config_dict)

    def _update_from_dict(self, config_dict: Dict[str, Any]) -> None:
        """Update configuration from dictionary."""
        for key, value in config_dict.items():
            if hasattr(self, key.upper()):
                if key.upper() == 'NYC_BOUNDS':
                    value = tuple(value)
                setattr(self, key.upper(), value)

    @property
    def timeout(self) -> Optional[float]:
        return self.TIMEOUT_SECONDS if self.TIMEOUT_SECONDS > 0 else None

    def get_data_paths(self) -> Dict[str, Path]:
        """Get all configured data paths as Path objects."""
        data_dir = Path(self.DATA_DIR)
        return {
            'input_file': Path(self.DEFAULT_INPUT_FILE),
            'output_dir': Path(self.DEFAULT_OUTPUT_DIR),
            'raw_data_dir': data_dir / 'raw',
            'processed_data_dir': data_dir / 'processed',
            'uploaded_data_dir': data_dir / 'uploaded',
            'metadata_file': data_dir / 'job_metadata.json',
            'logs_dir': Path(self.LOG_DIR)
        }

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        paths = self.get_data_paths()
        for path_name, path in paths.items():
            if path_name.endswith('_dir'):
                path.mkdir(parents=True, exist_ok=True)

    def validate_config(self) -> Dict[str, bool]:
        """
        Validate configuration values.

        Returns:
            dict: Validation results for each setting
        """
        validations = {}

        # Validate numeric ranges
        validations['chunk_size'] = self.DEFAULT_CHUNK_SIZE > 0
        validations['max_workers'] = self.MAX_WORKERS >= 1
        validations['timeout'] = self.TIMEOUT_SECONDS >= 0
        validations['sample_rows'] = self.DEFAULT_SAMPLE_ROWS > 0
        validations['error_rate'] = 0.0 <= self.SAMPLE_ERROR_RATE <= 1.0
        validations['fare_range'] = 0.0 <= self.MIN_FARE < self.MAX_FARE
        validations['trip_minutes'] = self.MAX_TRIP_MINUTES > 0
        validations['nyc_bounds'] = (
            len(self.NYC_BOUNDS) == 4
            and self.NYC_BOUNDS[0] < self.NYC_BOUNDS[2]
            and self.NYC_BOUNDS[1] < self.NYC_BOUNDS[3]
        )
        validations['api_port'] = 1000 <= self.API_PORT <= 65535
        validations['log_chunk_interval'] = self.LOG_CHUNK_INTERVAL > 0

        # Validate log level
        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        validations['log_level'] = self.LOG_LEVEL.upper() in valid_log_levels

        return validations

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            attr: getattr(self, attr)
            for attr in dir(self)
            if attr.isupper() and not callable(getattr(self, attr))
        }

    def save_to_file(self, file_path: str) -> None:
        """Save configuration to JSON file."""
        with open(file_path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2, default=str)

    @classmethod
    def load_from_file(cls, file_path: str) -> 'Config':
        """Load configuration from JSON file."""
        with open(file_path, 'r') as f:
            config_dict = json.load(f)
        return cls(config_dict)

    def __str__(self) -> str:
        """String representation of configuration."""
        lines = ["Configuration Settings:"]
        config_dict = self.to_dict()
        for key, value in sorted(config_dict.items()):
            lines.append(f"  {key}: {value}")
        return "\n".join(lines)
