# ========================
# src/taxiflow/pipeline/analysis.py
# ========================

"""
Taxi Trip Analysis Workflow

The multi-pass analysis of a raw trip file: import with the declared schema,
select and enrich plausible trips, then summarize the cleaned dataset and
save the reports.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .aggregation import Aggregator, CrossTab, DateGroupSummary
from .cleaning import PAYMENT_METHOD_LEVELS, TAXI_TRIP_SCHEMA, WEEKDAY_LEVELS, TripCleaner
from .dataset import Dataset
from .ingestion import ChunkReader
from .orchestrator import DataPipeline, import_delimited
from .schema import Schema
from .storage import ChunkWriter, ReportSaver
from ..utils.cancellation import CancellationToken
from ..utils.config import Config
from ..utils.performance_monitor import ProgressCallback

logger = logging.getLogger(__name__)

SUMMARY_COLUMNS = (
    "passenger_count", "trip_distance", "fare_amount", "tip_amount", "total_amount",
    "trip_minutes", "straight_line_miles", "average_mph", "tip_percent",
    "pickup_hour", "payment_method", "pickup_weekday",
)


def summary_aggregator(schema: Schema) -> Aggregator:
    """Column summaries plus the payment x weekday table and daily fares."""
    return Aggregator.from_schema(
        schema,
        columns=[c for c in SUMMARY_COLUMNS if c in schema],
        extra=[
            CrossTab("payment_method", "pickup_weekday", PAYMENT_METHOD_LEVELS, WEEKDAY_LEVELS),
            DateGroupSummary("tpep_pickup_datetime", "fare_amount", name="daily_fares"),
        ]
    )


def run_trip_analysis(input_file: str,
                      output_dir: str,
                      config: Optional[Config] = None,
                      schema: Optional[Schema] = None,
                      chunk_size: Optional[int] = None,
                      cancel_token: Optional[CancellationToken] = None,
                      progress_callback: Optional[ProgressCallback] = None) -> Dict[str, Any]:
    """
    Execute the complete trip analysis from start to finish.

    Args:
        input_file (str): Raw delimited trip file
        output_dir (str): Directory for datasets and reports
        config (Config): Configuration object
        schema (Schema): Declared schema of the raw file (default: taxi schema)
        chunk_size (int): Rows per chunk (default from config)
        cancel_token (CancellationToken): Shared by all passes
        progress_callback (callable): Receives progress snapshots of each pass

    Returns:
        dict: Summary of processing results and saved files
    """
    config = config or Config()
    schema = schema or TAXI_TRIP_SCHEMA
    chunk_size = chunk_size or config.DEFAULT_CHUNK_SIZE
    cancel_token = cancel_token or CancellationToken(config.timeout)
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    # Pass 1: import with the declared schema
    trips = Dataset(out / "trips.csv", schema)
    logger.info(f"Pass 1: importing '{input_file}'...")
    imported = import_delimited(input_file, schema, trips, chunk_size,
                                delimiter=config.INPUT_DELIMITER, config=config,
                                cancel_token=cancel_token)

    # Pass 2: select plausible trips and derive analysis columns
    cleaner = TripCleaner(config)
    transform = cleaner.cleaning_transform()
    clean_trips = Dataset(out / "clean_trips.csv", transform.output_schema(schema))
    logger.info("Pass 2: cleaning and enriching trips...")
    cleaned = DataPipeline(config, name="clean trips").run(
        ChunkReader(trips, chunk_size),
        transform=transform,
        writer=ChunkWriter(clean_trips),
        row_selection=cleaner.selection(),
        cancel_token=cancel_token,
        progress_callback=progress_callback
    )

    # Pass 3: summarize the cleaned dataset
    logger.info("Pass 3: summarizing clean trips...")
    summarized = DataPipeline(config, name="summarize trips").run(
        ChunkReader(clean_trips, chunk_size),
        aggregator=summary_aggregator(clean_trips.schema),
        cancel_token=cancel_token,
        progress_callback=progress_callback
    )

    saved_files = ReportSaver(str(out)).save_all(summarized.summary)
    saved_files['trips'] = str(trips.location)
    saved_files['clean_trips'] = str(clean_trips.location)

    results = {
        'pipeline_status': 'completed',
        'input_file': input_file,
        'output_directory': str(out),
        'saved_files': saved_files,
        'processing_stats': {
            'chunk_size': chunk_size,
            'rows_imported': imported.rows_written,
            'records_processed': cleaned.rows_written,
            'chunks_processed': cleaned.chunks_processed,
            'input_file_size': Path(input_file).stat().st_size,
        },
        'data_quality_stats': TripCleaner.get_statistics(cleaned.rows_read, cleaned.rows_selected),
        'performance': {
            'import': imported.performance,
            'clean': cleaned.performance,
            'summary': summarized.performance,
        }
    }

    logger.info(f"Trip analysis finished: {cleaned.rows_written:,}/{imported.rows_written:,} trips kept")
    return results
