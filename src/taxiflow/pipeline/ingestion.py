# ========================
# src/taxiflow/pipeline/ingestion.py
# ========================

"""
Data Ingestion Module

Handles memory-efficient reading of large delimited files using chunked
processing, with every value checked against the declared schema.
"""

import csv
import logging
from typing import BinaryIO, Iterator, List, Optional

from .dataset import Chunk, Dataset, RowPredicate
from ..utils.cancellation import CancellationToken
from ..utils.exceptions import PipelineError, SchemaMismatch, SourceUnavailable, TransformFailure

logger = logging.getLogger(__name__)

# Bytes sampled from the start of a file to estimate the average row width
ESTIMATE_SAMPLE_BYTES = 64 * 1024


def _decoded_lines(f: BinaryIO) -> Iterator[str]:
    # UTF-8 never uses the newline byte inside a multi-byte sequence
    for line in f:
        yield line.decode('utf-8')


class ChunkReader:
    """
    A memory-efficient reader that yields a dataset in chunks.
    This is crucial for handling large trip files (100M+ rows) without
    overloading system memory.
    """

    def __init__(self,
                 dataset: Dataset,
                 chunk_size: int = 1000,
                 row_selection: Optional[RowPredicate] = None,
                 cancel_token: Optional[CancellationToken] = None):
        """
        Initialize the chunk reader.

        Args:
            dataset (Dataset): Dataset to read
            chunk_size (int): Number of source rows per chunk
            row_selection (callable): Optional predicate; rows failing it are dropped
            cancel_token (CancellationToken): Optional token checked while reading
        """
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.dataset = dataset
        self.chunk_size = chunk_size
        self.row_selection = row_selection
        self.cancel_token = cancel_token
        self.header: List[str] = []
        self.rows_read = 0
        logger.info(f"Initialized ChunkReader for {dataset.location} (chunk_size={chunk_size})")

    def __iter__(self) -> Iterator[Chunk]:
        return self.read_in_chunks()

    def read_in_chunks(self, cancel_token: Optional[CancellationToken] = None) -> Iterator[Chunk]:
        """
        A generator that yields a Chunk for each slice of the dataset.
        Every call re-opens the file and starts from the first row.

        Args:
            cancel_token (CancellationToken): Token for this pass only, checked
                together with the reader's own token

        Yields:
            Chunk: Typed rows of one slice, after row selection.
        """
        tokens = [t for t in (self.cancel_token, cancel_token) if t is not None]
        self.rows_read = 0
        try:
            f = open(self.dataset.location, 'rb')
        except OSError as e:
            logger.error(f"Dataset '{self.dataset.location}' could not be opened: {e}")
            raise SourceUnavailable(f"Cannot open dataset {self.dataset.location}: {e}") from e

        with f:
            reader = csv.DictReader(_decoded_lines(f), delimiter=self.dataset.delimiter)
            try:
                self.header = list(reader.fieldnames or [])
            except (UnicodeDecodeError, csv.Error) as e:
                raise self._unreadable(e, 0, None) from e
            logger.info(f"Header: {self.header}")
            self.dataset.schema.validate_header(self.header, str(self.dataset.location))

            chunk_index = 0
            chunk_start = 0
            rows = []
            scanned = 0
            records = iter(reader)

            while True:
                try:
                    raw = next(records)
                except StopIteration:
                    break
                except (UnicodeDecodeError, csv.Error) as e:
                    raise self._unreadable(e, chunk_index, self.rows_read) from e

                for token in tokens:
                    token.check()
                row_number = self.rows_read
                self.rows_read += 1
                scanned += 1

                try:
                    row = self.dataset.schema.coerce_row(raw, row_number)
                except SchemaMismatch as e:
                    logger.error(f"Schema mismatch in {self.dataset.location}: {e}")
                    raise e.with_location(chunk_index, row_number)

                if self._selected(row, chunk_index, row_number):
                    rows.append(row)

                if scanned == self.chunk_size:
                    logger.debug(f"Yielding chunk {chunk_index} with {len(rows)}/{scanned} rows")
                    yield Chunk(chunk_index, chunk_start, rows, scanned)
                    chunk_index += 1
                    chunk_start = self.rows_read
                    rows = []
                    scanned = 0

            # Yield any remaining rows in the last chunk
            if scanned:
                logger.debug(f"Yielding final chunk {chunk_index} with {len(rows)}/{scanned} rows")
                yield Chunk(chunk_index, chunk_start, rows, scanned)

            logger.info(f"Total rows read from {self.dataset.name}: {self.rows_read}")

    def _unreadable(self, error: Exception, chunk_index: int, row_offset: Optional[int]) -> SchemaMismatch:
        logger.error(f"Unreadable data in {self.dataset.location}: {error}")
        return SchemaMismatch(f"Cannot read {self.dataset.location}: {error}",
                              chunk_index=chunk_index, row_offset=row_offset)

    def _selected(self, row, chunk_index: int, row_number: int) -> bool:
        if self.row_selection is None:
            return True
        try:
            return bool(self.row_selection(row))
        except PipelineError:
            raise
        except Exception as e:
            raise TransformFailure(f"Row selection failed: {e}",
                                   chunk_index=chunk_index, row_offset=row_number) from e

    def estimate_total_chunks(self) -> int:
        """
        Estimate how many chunks the dataset will produce from its size and
        the average width of the rows at the start of the file.

        Returns:
            int: Estimated chunk count (at least 1 for a non-empty file)
        """
        size = self.dataset.size_bytes()
        if size == 0:
            return 0
        try:
            with open(self.dataset.location, 'rb') as f:
                sample = f.read(ESTIMATE_SAMPLE_BYTES)
        except OSError as e:
            logger.warning(f"Could not sample {self.dataset.location} for estimation: {e}")
            return 0

        lines = sample.count(b'\n')
        if lines <= 1:
            return 1
        header_end = sample.index(b'\n') + 1
        avg_row_bytes = max((len(sample) - header_end) / (lines - 1), 1.0)
        estimated_rows = (size - header_end) / avg_row_bytes
        return max(1, -(-int(estimated_rows) // self.chunk_size))
