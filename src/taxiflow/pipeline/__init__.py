# ========================
# src/taxiflow/pipeline/__init__.py
# ========================

"""
Chunked Pipeline Package

This package contains all core components of the out-of-core pipeline:
- schema: Declared column types
- ingestion: Memory-efficient chunked reading
- transforms: Pure per-chunk transforms
- storage: Staged, all-or-nothing writes and reports
- aggregation: Mergeable partial statistics
- orchestrator: Pass coordination
- cleaning / analysis: Taxi trip rules and the multi-pass workflow
"""

from .schema import Column, ColumnType, Schema, categorical, numeric, text, timestamp
from .dataset import Chunk, Dataset
from .ingestion import ChunkReader
from .transforms import (
    AddColumn, Compose, DropColumns, FillNulls, Identity, LookupColumn, LookupTable,
    MapColumn, PredictColumn, RenameColumn, Transform, TransformContext, compose,
)
from .storage import ChunkWriter, ReportSaver, APPEND, OVERWRITE
from .aggregation import (
    Aggregator, CategoryCounts, CrossTab, DateGroupSummary, NumericSummary, PartialStatistic,
)
from .orchestrator import (
    DataPipeline, PipelineResult, estimate_processing_time, export_delimited, import_delimited, validate_input,
)
from .cleaning import TAXI_TRIP_SCHEMA, TripCleaner
from .analysis import run_trip_analysis, summary_aggregator

__all__ = [
    'Column', 'ColumnType', 'Schema', 'categorical', 'numeric', 'text', 'timestamp',
    'Chunk', 'Dataset',
    'ChunkReader',
    'AddColumn', 'Compose', 'DropColumns', 'FillNulls', 'Identity', 'LookupColumn', 'LookupTable',
    'MapColumn', 'PredictColumn', 'RenameColumn', 'Transform', 'TransformContext', 'compose',
    'ChunkWriter', 'ReportSaver', 'APPEND', 'OVERWRITE',
    'Aggregator', 'CategoryCounts', 'CrossTab', 'DateGroupSummary', 'NumericSummary', 'PartialStatistic',
    'DataPipeline', 'PipelineResult', 'estimate_processing_time', 'export_delimited', 'import_delimited',
    'validate_input',
    'TAXI_TRIP_SCHEMA', 'TripCleaner',
    'run_trip_analysis', 'summary_aggregator',
]
