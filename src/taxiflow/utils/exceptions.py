# ========================
# src/taxiflow/utils/exceptions.py
# ========================

"""
Pipeline Exceptions

Error taxonomy for chunked pipeline runs. Every error can carry the chunk
index and row offset where it happened so a failed run can be diagnosed
without re-reading the whole dataset.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for all pipeline exceptions."""

    def __init__(self,
                 message: str,
                 chunk_index: Optional[int] = None,
                 row_offset: Optional[int] = None,
                 column: Optional[str] = None):
        self.message = message
        self.chunk_index = chunk_index
        self.row_offset = row_offset
        self.column = column
        super().__init__(self.message)

    def with_location(self, chunk_index: Optional[int], row_offset: Optional[int]) -> 'PipelineError':
        """Fill in the chunk location if it was not known where the error was raised."""
        if self.chunk_index is None:
            self.chunk_index = chunk_index
        if self.row_offset is None:
            self.row_offset = row_offset
        return self

    def __str__(self) -> str:
        parts = [self.message]
        if self.chunk_index is not None:
            parts.append(f"chunk={self.chunk_index}")
        if self.row_offset is not None:
            parts.append(f"row={self.row_offset}")
        if self.column is not None:
            parts.append(f"column={self.column}")
        return " | ".join(parts)


class SourceUnavailable(PipelineError):
    """Raised when the backing storage of a dataset cannot be opened."""


class SchemaMismatch(PipelineError):
    """Raised when declared column types disagree with the actual data."""


class TransformFailure(PipelineError):
    """Raised when a user-supplied transform or predicate fails on a chunk."""


class WriteFailure(PipelineError):
    """Raised when the destination dataset cannot be written or finalized."""


class Cancelled(PipelineError):
    """Raised when the caller cancels a run or its deadline expires."""
