# ========================
# src/taxiflow/pipeline/orchestrator.py
# ========================

"""
Pipeline Orchestrator Module

Drives a ChunkReader to exhaustion, applies row selection and a transform to
every chunk and forwards the result to a ChunkWriter and/or an Aggregator.
A run either commits all of its output or none of it.
"""

import logging
from collections import deque
from contextlib import closing
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .aggregation import Aggregator
from .dataset import Chunk, Dataset, RowPredicate
from .ingestion import ChunkReader
from .schema import Schema
from .storage import ChunkWriter, OVERWRITE
from .transforms import Identity, Transform, TransformContext
from ..utils.cancellation import CancellationToken
from ..utils.config import Config
from ..utils.exceptions import PipelineError, SchemaMismatch, TransformFailure, WriteFailure
from ..utils.performance_monitor import ProgressCallback, monitor_performance

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Outcome of a completed run."""

    chunks_processed: int = 0
    rows_read: int = 0
    rows_selected: int = 0
    rows_written: int = 0
    output: Optional[str] = None
    output_schema: Optional[Schema] = None
    summary: Optional[Dict[str, Dict[str, Any]]] = None
    performance: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pipeline_status': 'completed',
            'chunks_processed': self.chunks_processed,
            'rows_read': self.rows_read,
            'rows_selected': self.rows_selected,
            'rows_written': self.rows_written,
            'output': self.output,
            'output_columns': self.output_schema.names if self.output_schema else None,
            'performance': self.performance
        }


class DataPipeline:
    """
    Orchestrates one pass over a dataset.
    Coordinates reading, selecting, transforming, writing and aggregating.
    """

    def __init__(self, config: Optional[Config] = None, name: str = "Pipeline"):
        """
        Initialize the data pipeline.

        Args:
            config (Config): Configuration object
            name (str): Name used in progress logs
        """
        self.config = config or Config()
        self.name = name
        self.tracker = None

    def progress(self) -> Optional[Dict[str, Any]]:
        """Snapshot of the run in progress (None before the first run)."""
        return self.tracker.snapshot() if self.tracker is not None else None

    def run(self,
            reader: ChunkReader,
            transform: Optional[Transform] = None,
            writer: Optional[ChunkWriter] = None,
            aggregator: Optional[Aggregator] = None,
            row_selection: Optional[RowPredicate] = None,
            context: Optional[Mapping[str, Any]] = None,
            cancel_token: Optional[CancellationToken] = None,
            progress_callback: Optional[ProgressCallback] = None,
            max_workers: Optional[int] = None) -> PipelineResult:
        """
        Execute one pass from start to finish.

        Args:
            reader (ChunkReader): Source of chunks
            transform (Transform): Per-chunk transform (default: identity)
            writer (ChunkWriter): Destination; its dataset schema must equal the
                transform's output schema
            aggregator (Aggregator): Statistics computed over transformed rows
            row_selection (callable): Predicate applied before the transform
            context (mapping): Read-only auxiliary objects for the transform
            cancel_token (CancellationToken): Caller-controlled abort/timeout
            progress_callback (callable): Receives a progress snapshot per chunk
            max_workers (int): Transform worker threads (default from config)

        Returns:
            PipelineResult: Counts, output location and finalized summary
        """
        if writer is None and aggregator is None:
            raise ValueError("A run needs a writer, an aggregator, or both")

        transform = transform or Identity()
        if not isinstance(context, TransformContext):
            context = TransformContext(context)
        if cancel_token is None:
            cancel_token = CancellationToken(self.config.timeout)
        workers = max_workers or self.config.MAX_WORKERS

        output_schema = transform.output_schema(reader.dataset.schema)
        if writer is not None and writer.dataset.schema != output_schema:
            raise SchemaMismatch(
                f"Writer schema {writer.dataset.schema.names} does not match the "
                f"transform output schema {output_schema.names}"
            )

        logger.info(f"Starting {self.name}: {reader.dataset.location} -> "
                    f"{writer.dataset.location if writer else 'aggregator only'} "
                    f"(transform={transform.name}, workers={workers})")

        result = PipelineResult(output_schema=output_schema)
        state = aggregator.empty() if aggregator is not None else None

        if writer is not None:
            writer.open(cancel_token)
        try:
            with monitor_performance(self.name,
                                     reader.estimate_total_chunks(),
                                     self.config.LOG_CHUNK_INTERVAL,
                                     progress_callback) as tracker:
                self.tracker = tracker
                chunks = self._process_chunks(reader, transform, aggregator, row_selection, context,
                                              workers, cancel_token)
                with closing(chunks):
                    for chunk, rows, partial in chunks:
                        cancel_token.check()
                        written = 0
                        if writer is not None:
                            written = self._write(writer, chunk, rows)
                        if aggregator is not None:
                            state = aggregator.merge(state, partial)

                        result.chunks_processed += 1
                        result.rows_read += chunk.rows_scanned
                        result.rows_selected += len(chunk)
                        result.rows_written += written
                        tracker.update_progress(chunk.rows_scanned, len(chunk), written)

                cancel_token.check()
                if writer is not None:
                    result.output = str(writer.finalize())
            result.performance = tracker.snapshot()
        except PipelineError as e:
            self._abort(writer, e)
            raise
        except Exception as e:
            self._abort(writer, e)
            raise PipelineError(f"Unexpected error during {self.name}: {e}") from e
        except BaseException as e:
            self._abort(writer, e)
            raise

        if aggregator is not None:
            result.summary = aggregator.finalize(state)

        logger.info(f"{self.name} finished successfully.")
        self._log_final_summary(result)
        return result

    def _process_chunks(self, reader, transform, aggregator, row_selection, context, workers, cancel_token):
        """
        Yield (chunk, transformed rows, partial statistics) in chunk order.
        With more than one worker, transforms run on a thread pool while at
        most ``2 * workers`` chunks are in flight.
        """
        if workers <= 1:
            for chunk in reader.read_in_chunks(cancel_token):
                yield (chunk,) + self._process_one(chunk, transform, aggregator, row_selection, context)
            return

        window = 2 * workers
        pending = deque()
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="chunk-worker") as executor:
            try:
                for chunk in reader.read_in_chunks(cancel_token):
                    pending.append((chunk, executor.submit(self._process_one, chunk, transform,
                                                           aggregator, row_selection, context)))
                    if len(pending) >= window:
                        done_chunk, future = pending.popleft()
                        yield (done_chunk,) + future.result()
                while pending:
                    done_chunk, future = pending.popleft()
                    yield (done_chunk,) + future.result()
            finally:
                for _, future in pending:
                    future.cancel()

    def _process_one(self, chunk: Chunk, transform: Transform, aggregator, row_selection, context):
        """Select, transform and pre-aggregate one chunk. Safe to run on a worker thread."""
        try:
            selected = chunk.select(row_selection)
        except Exception as e:
            raise TransformFailure(f"Row selection failed: {e}",
                                   chunk_index=chunk.index, row_offset=chunk.row_offset) from e
        chunk.rows = selected.rows

        try:
            rows = transform.apply(chunk.rows, context)
        except PipelineError as e:
            raise e.with_location(chunk.index, chunk.row_offset)
        except Exception as e:
            logger.error(f"Transform '{transform.name}' failed on chunk {chunk.index}: {e}")
            raise TransformFailure(f"Transform '{transform.name}' failed: {e}",
                                   chunk_index=chunk.index, row_offset=chunk.row_offset) from e

        if len(rows) != len(chunk.rows):
            raise TransformFailure(
                f"Transform '{transform.name}' changed the row count from {len(chunk.rows)} to {len(rows)}; "
                f"use a row-selection predicate to remove rows",
                chunk_index=chunk.index, row_offset=chunk.row_offset
            )

        partial = None
        if aggregator is not None:
            partial = aggregator.update(aggregator.empty(), rows)
        return rows, partial

    def _write(self, writer: ChunkWriter, chunk: Chunk, rows) -> int:
        try:
            return writer.write(rows)
        except PipelineError as e:
            raise e.with_location(chunk.index, chunk.row_offset)
        except OSError as e:
            raise WriteFailure(f"Writing chunk failed: {e}",
                               chunk_index=chunk.index, row_offset=chunk.row_offset) from e

    def _abort(self, writer: Optional[ChunkWriter], error: Exception) -> None:
        logger.error(f"{self.name} aborted: {error}")
        if writer is not None:
            writer.abort()

    def _log_final_summary(self, result: PipelineResult) -> None:
        """Log final run summary."""
        logger.info("=" * 60)
        logger.info(f"PIPELINE EXECUTION SUMMARY - {self.name}")
        logger.info("=" * 60)
        logger.info(f"Chunks processed: {result.chunks_processed:,}")
        logger.info(f"Rows read: {result.rows_read:,}")
        logger.info(f"Rows selected: {result.rows_selected:,}")
        logger.info(f"Rows written: {result.rows_written:,}")
        if result.output:
            logger.info(f"Output dataset: {result.output}")
        if result.summary:
            logger.info(f"Statistics computed: {len(result.summary)}")
        logger.info("=" * 60)


def validate_input(dataset: Dataset) -> bool:
    """
    Validate that a dataset exists, is readable and its header matches its schema.

    Returns:
        bool: True if input is valid
    """
    input_path = dataset.location
    if not input_path.exists():
        logger.error(f"Input file does not exist: {input_path}")
        return False

    if not input_path.is_file():
        logger.error(f"Input path is not a file: {input_path}")
        return False

    try:
        with open(input_path, 'r', encoding='utf-8') as f:
            header = f.readline().rstrip('\r\n').split(dataset.delimiter)
    except OSError as e:
        logger.error(f"Cannot read input file: {e}")
        return False

    try:
        dataset.schema.validate_header(header, str(input_path))
    except SchemaMismatch as e:
        logger.error(str(e))
        return False

    logger.info(f"Input validation passed: {input_path}")
    return True


def estimate_processing_time(dataset: Dataset, chunk_size: int, rows_per_second: int = 50000) -> Dict[str, Any]:
    """
    Estimate processing time from file size and row width.

    Returns:
        dict: Processing time estimates
    """
    reader = ChunkReader(dataset, chunk_size)
    chunks = reader.estimate_total_chunks()
    estimated_rows = chunks * chunk_size
    seconds = estimated_rows / rows_per_second
    return {
        'file_size_mb': dataset.size_bytes() / (1024 * 1024),
        'estimated_rows': estimated_rows,
        'chunk_count_estimate': chunks,
        'estimated_processing_time_seconds': seconds,
        'estimated_processing_time_minutes': seconds / 60
    }


def import_delimited(source: str,
                     schema: Schema,
                     destination: Dataset,
                     chunk_size: int = 10000,
                     delimiter: str = ",",
                     config: Optional[Config] = None,
                     cancel_token: Optional[CancellationToken] = None) -> PipelineResult:
    """
    Import a delimited file into a dataset, checking every value against the
    declared schema (values are normalized, e.g. "3" becomes 3).

    Args:
        source (str): Path of the delimited file
        schema (Schema): Declared column types of the source
        destination (Dataset): Dataset to create or overwrite
        chunk_size (int): Rows per chunk
        delimiter (str): Field delimiter of the source file
        config (Config): Configuration object
        cancel_token (CancellationToken): Optional abort/timeout token
    """
    source_dataset = Dataset(Path(source), schema, delimiter=delimiter)
    reader = ChunkReader(source_dataset, chunk_size)
    writer = ChunkWriter(destination.with_schema(schema), mode=OVERWRITE)
    return DataPipeline(config, name=f"import {source_dataset.name}").run(
        reader, writer=writer, cancel_token=cancel_token
    )


def export_delimited(dataset: Dataset,
                     destination: str,
                     delimiter: str = ",",
                     chunk_size: int = 10000,
                     config: Optional[Config] = None) -> PipelineResult:
    """Export a dataset, unchanged, to a delimited file."""
    target = Dataset(Path(destination), dataset.schema, delimiter=delimiter)
    reader = ChunkReader(dataset, chunk_size)
    writer = ChunkWriter(target, mode=OVERWRITE)
    return DataPipeline(config, name=f"export {dataset.name}").run(reader, writer=writer)
