# ========================
# src/taxiflow/pipeline/storage.py
# ========================

"""
Data Storage Module

Writes transformed chunks to a destination dataset through a staged,
all-or-nothing write session, and saves summary reports to CSV/JSON.
"""

import csv
import os
import json
import shutil
import logging
import tempfile
from typing import Any, Dict, List, Optional
from pathlib import Path

from .dataset import Dataset, Row
from ..utils.cancellation import CancellationToken
from ..utils.exceptions import SchemaMismatch, WriteFailure

logger = logging.getLogger(__name__)

OVERWRITE = "overwrite"
APPEND = "append"


class ChunkWriter:
    """
    Appends chunks to a write session and swaps the result into place on
    finalize().

    Rows are always written to a staging file next to the destination, so a
    session that fails or is aborted leaves the destination exactly as it was.
    This also makes it safe to write back to the dataset being read.
    """

    def __init__(self,
                 dataset: Dataset,
                 mode: str = OVERWRITE,
                 cancel_token: Optional[CancellationToken] = None):
        """
        Initialize the chunk writer.

        Args:
            dataset (Dataset): Destination dataset (its schema is the output schema)
            mode (str): 'overwrite' to replace all content, 'append' to add to it
            cancel_token (CancellationToken): Optional token checked per chunk
        """
        if mode not in (OVERWRITE, APPEND):
            raise ValueError(f"Unknown write mode '{mode}'")
        self.dataset = dataset
        self.mode = mode
        self.cancel_token = cancel_token
        self.rows_written = 0
        self._session_tokens: List[CancellationToken] = []
        self._staging_path: Optional[Path] = None
        self._file = None
        self._writer = None
        logger.info(f"ChunkWriter initialized for {dataset.location} (mode={mode})")

    @property
    def active(self) -> bool:
        return self._file is not None

    def open(self, cancel_token: Optional[CancellationToken] = None) -> 'ChunkWriter':
        """
        Start a write session.

        Args:
            cancel_token (CancellationToken): Token for this session only, checked
                together with the writer's own token
        """
        if self.active:
            raise WriteFailure(f"A write session for {self.dataset.location} is already active")

        target = self.dataset.location
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, staging = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".staging", dir=target.parent)
            self._staging_path = Path(staging)
            self._file = os.fdopen(fd, 'w', newline='', encoding='utf-8')
        except OSError as e:
            self._discard()
            raise WriteFailure(f"Cannot start write session for {target}: {e}") from e

        self._writer = csv.writer(self._file, delimiter=self.dataset.delimiter)
        self.rows_written = 0
        self._session_tokens = [t for t in (self.cancel_token, cancel_token) if t is not None]

        try:
            if self.mode == APPEND and self.dataset.exists():
                self._stage_existing_content()
            else:
                self._writer.writerow(self.dataset.schema.names)
        except SchemaMismatch:
            self.abort()
            raise
        except OSError as e:
            self.abort()
            raise WriteFailure(f"Cannot stage existing content of {target}: {e}") from e

        logger.debug(f"Write session opened, staging to {self._staging_path}")
        return self

    def _stage_existing_content(self) -> None:
        """Copy the current dataset into the staging file so append is all-or-nothing."""
        with open(self.dataset.location, 'r', newline='', encoding='utf-8') as src:
            reader = csv.reader(src, delimiter=self.dataset.delimiter)
            header = next(reader, None)
            if header is None:
                self._writer.writerow(self.dataset.schema.names)
                return
            self.dataset.schema.validate_header(header, str(self.dataset.location))
            self._writer.writerow(header)
            for fields in reader:
                self._writer.writerow(fields)

    def write(self, rows: List[Row]) -> int:
        """
        Append rows to the current session.

        Args:
            rows (list[dict]): Typed rows conforming to the dataset schema

        Returns:
            int: Number of rows written
        """
        if not self.active:
            raise WriteFailure("write() called without an active session")
        self._check_cancelled()

        schema = self.dataset.schema
        formatted = [schema.format_row(row, self.rows_written + i) for i, row in enumerate(rows)]
        try:
            self._writer.writerows(formatted)
        except OSError as e:
            raise WriteFailure(f"Error writing to staging file for {self.dataset.location}: {e}") from e

        self.rows_written += len(formatted)
        return len(formatted)

    def finalize(self) -> Path:
        """
        Seal the session and make the written rows the dataset's content.

        Returns:
            Path: Location of the finalized dataset
        """
        if not self.active:
            raise WriteFailure("finalize() called without an active session")
        self._check_cancelled()
        try:
            self._file.flush()
            os.fsync(self._file.fileno())
            self._file.close()
            self._file = None
            if self.dataset.exists():
                shutil.copymode(self.dataset.location, self._staging_path)
            else:
                os.chmod(self._staging_path, 0o644)
            os.replace(self._staging_path, self.dataset.location)
        except OSError as e:
            self.abort()
            raise WriteFailure(f"Could not finalize {self.dataset.location}: {e}") from e

        self._staging_path = None
        self._writer = None
        self._session_tokens = []
        logger.info(f"Finalized {self.dataset.location} ({self.rows_written} rows written, mode={self.mode})")
        return self.dataset.location

    def _check_cancelled(self) -> None:
        for token in self._session_tokens:
            token.check()

    def abort(self) -> None:
        """Discard the session; the destination is left untouched."""
        if self._staging_path is not None:
            logger.warning(f"Aborting write session for {self.dataset.location}")
        self._discard()

    def _discard(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            except OSError as e:
                logger.debug(f"Error closing staging file: {e}")
            self._file = None
        if self._staging_path is not None:
            try:
                self._staging_path.unlink()
            except FileNotFoundError:
                pass
            self._staging_path = None
        self._writer = None
        self._session_tokens = []

    def __enter__(self) -> 'ChunkWriter':
        return self.open()

    def __exit__(self, exc_type, exc_value, traceback) -> bool:
        if exc_type is None:
            self.finalize()
        else:
            self.abort()
        return False


class ReportSaver:
    """
    Saves finalized summaries from an Aggregator to CSV and JSON files.
    """

    def __init__(self, output_dir: str = "data/processed"):
        """
        Initialize the report saver.

        Args:
            output_dir (str): Directory to save report files
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"ReportSaver initialized with output directory: {self.output_dir}")

    def save_all(self, summary: Dict[str, Dict[str, Any]]) -> Dict[str, str]:
        """
        Save every statistic of a finalized summary.

        Args:
            summary (dict): Output of Aggregator.finalize()

        Returns:
            dict: Mapping of report name to saved file path
        """
        saved_files = {}
        numeric_rows = []
        category_rows = []

        for name, result in summary.items():
            kind = result.get('kind')
            if kind == 'numeric':
                numeric_rows.append({k: v for k, v in result.items() if k != 'kind'})
            elif kind == 'categorical':
                for level, count in result['counts'].items():
                    category_rows.append({
                        'column': result['column'],
                        'level': level,
                        'count': count,
                        'proportion': result['proportions'][level]
                    })
            elif kind == 'crosstab':
                saved_files[name] = self.save_crosstab(name, result)
            elif kind == 'date_groups':
                saved_files[name] = self.save_date_groups(name, result)

        if numeric_rows:
            saved_files['numeric_summary'] = self._write_csv(
                self.output_dir / "numeric_summary.csv",
                ['column', 'count', 'nulls', 'sum', 'mean', 'variance', 'std', 'min', 'max'],
                numeric_rows
            )
        if category_rows:
            saved_files['category_summary'] = self._write_csv(
                self.output_dir / "category_summary.csv",
                ['column', 'level', 'count', 'proportion'],
                category_rows
            )

        saved_files['summary'] = self._save_json(self.output_dir / "summary.json", summary)
        logger.info(f"All reports saved successfully to {len(saved_files)} files")
        return saved_files

    def save_crosstab(self, name: str, result: Dict[str, Any]) -> str:
        """Save a cross-tabulation as a wide table: one row per row-level."""
        col_levels = result['col_levels']
        headers = [result['row_column']] + list(col_levels)
        rows = [{result['row_column']: level, **result['table'][level]} for level in result['row_levels']]
        return self._write_csv(self.output_dir / f"{name}.csv", headers, rows)

    def save_date_groups(self, name: str, result: Dict[str, Any]) -> str:
        """Save per-date groups sorted by date (calendar heat-map input)."""
        rows = [{'date': day, **values} for day, values in sorted(result['groups'].items())]
        return self._write_csv(self.output_dir / f"{name}.csv", ['date', 'count', 'sum', 'mean'], rows)

    def _save_json(self, file_path: Path, data: Dict[str, Any]) -> str:
        with open(file_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)
        logger.info(f"Summary saved to {file_path}")
        return str(file_path)

    def _write_csv(self, file_path: Path, headers: List[str], data_items: List[Dict]) -> str:
        """Write report rows to a CSV file."""
        try:
            with open(file_path, 'w', newline='', encoding='utf-8') as f:
                writer = csv.DictWriter(f, fieldnames=headers)
                writer.writeheader()
                writer.writerows(data_items)

            logger.info(f"Saved {len(data_items)} records to {file_path}")
            return str(file_path)

        except OSError as e:
            logger.error(f"Error writing CSV file {file_path}: {e}")
            raise WriteFailure(f"Could not write report {file_path}: {e}") from e

