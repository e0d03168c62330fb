# ========================
# src/taxiflow/utils/__init__.py
# ========================

"""
Utilities Package

Configuration, logging, errors, cancellation, progress monitoring, job
metadata and synthetic data helpers shared by the pipeline, CLI and API.
"""

from .config import Config
from .cancellation import CancellationToken
from .exceptions import (
    Cancelled, PipelineError, SchemaMismatch, SourceUnavailable, TransformFailure, WriteFailure,
)
from .performance_monitor import monitor_performance, ProgressTracker
from .logging_setup import setup_logging
from .data_generator import TaxiTripGenerator
from .job_metadata import JobMetadataManager

__all__ = [
    'Config',
    'CancellationToken',
    'Cancelled', 'PipelineError', 'SchemaMismatch', 'SourceUnavailable', 'TransformFailure', 'WriteFailure',
    'monitor_performance',
    'ProgressTracker',
    'setup_logging',
    'TaxiTripGenerator',
    'JobMetadataManager'
]
