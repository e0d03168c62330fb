# ========================
# src/taxiflow/utils/performance_monitor.py
# ========================

"""
Progress and Performance Monitoring

Tracks chunks and rows processed, throughput and memory usage of a pipeline
run. Snapshots can be taken from other threads (e.g. a status endpoint)
while the run is in progress.
"""

import os
import time
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional

import psutil

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], None]


class ProgressTracker:
    """
    Progress tracking for a pipeline run.
    Tracks memory usage, processing time, throughput and chunk progress
    against an estimated total.
    """

    def __init__(self,
                 name: str = "Pipeline",
                 total_chunks_estimate: int = 0,
                 log_interval: int = 100,
                 callback: Optional[ProgressCallback] = None):
        """
        Initialize progress tracker.

        Args:
            name (str): Name for this run
            total_chunks_estimate (int): Estimated number of chunks (0 if unknown)
            log_interval (int): Log progress every N chunks
            callback (callable): Optional function receiving a snapshot per chunk
        """
        self.name = name
        self.total_chunks_estimate = total_chunks_estimate
        self.log_interval = max(1, log_interval)
        self.callback = callback
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.peak_memory_mb = 0.0
        self.rows_read = 0
        self.rows_selected = 0
        self.rows_written = 0
        self.chunks_processed = 0
        self._lock = threading.Lock()
        self._process = psutil.Process(os.getpid())

        logger.debug(f"ProgressTracker initialized: {name}")

    def start_monitoring(self) -> None:
        """Start progress monitoring."""
        with self._lock:
            self.start_time = time.time()
            self.peak_memory_mb = self._get_memory_usage_mb()

        logger.info(f"{self.name} - Progress monitoring started "
                    f"(estimated chunks: {self.total_chunks_estimate or 'unknown'})")
        logger.info(f"Initial memory usage: {self.peak_memory_mb:.2f} MB")

    def update_progress(self, rows_read: int, rows_selected: int, rows_written: int = 0) -> None:
        """
        Record one processed chunk.

        Args:
            rows_read (int): Source rows scanned for this chunk
            rows_selected (int): Rows that passed row selection
            rows_written (int): Rows forwarded to the writer
        """
        current_memory = self._get_memory_usage_mb()
        with self._lock:
            self.rows_read += rows_read
            self.rows_selected += rows_selected
            self.rows_written += rows_written
            self.chunks_processed += 1
            self.peak_memory_mb = max(self.peak_memory_mb, current_memory)
            if self.chunks_processed > self.total_chunks_estimate:
                self.total_chunks_estimate = self.chunks_processed

        if self.chunks_processed % self.log_interval == 0:
            self._log_progress(current_memory)

        if self.callback is not None:
            try:
                self.callback(self.snapshot())
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    def _log_progress(self, current_memory: float) -> None:
        """Log current progress."""
        snap = self.snapshot()
        logger.info(
            f"{self.name} - Progress: {snap['chunks_processed']}/{snap['total_chunks_estimate']} chunks, "
            f"{snap['rows_read']:,} rows, "
            f"{snap['throughput_rows_per_second']:.0f} rows/sec, "
            f"Memory: {current_memory:.2f} MB"
        )

    def snapshot(self) -> Dict[str, Any]:
        """Thread-safe copy of the current progress."""
        with self._lock:
            elapsed = (self.end_time or time.time()) - self.start_time if self.start_time else 0.0
            total = self.total_chunks_estimate
            return {
                'name': self.name,
                'chunks_processed': self.chunks_processed,
                'total_chunks_estimate': total,
                'fraction_complete': min(self.chunks_processed / total, 1.0) if total else None,
                'rows_read': self.rows_read,
                'rows_selected': self.rows_selected,
                'rows_written': self.rows_written,
                'elapsed_seconds': elapsed,
                'throughput_rows_per_second': self.rows_read / elapsed if elapsed > 0 else 0.0,
                'peak_memory_mb': self.peak_memory_mb
            }

    def stop_monitoring(self) -> Dict[str, Any]:
        """
        Stop monitoring and return performance summary.

        Returns:
            dict: Performance statistics
        """
        with self._lock:
            self.end_time = time.time()
        summary = self.snapshot()
        self._log_summary(summary)
        return summary

    def _log_summary(self, summary: Dict[str, Any]) -> None:
        logger.info("=" * 60)
        logger.info(f"PERFORMANCE SUMMARY - {summary['name']}")
        logger.info("=" * 60)
        logger.info(f"Total processing time: {summary['elapsed_seconds']:.2f} seconds")
        logger.info(f"Rows read: {summary['rows_read']:,}")
        logger.info(f"Rows selected: {summary['rows_selected']:,}")
        logger.info(f"Chunks processed: {summary['chunks_processed']:,}")
        logger.info(f"Average throughput: {summary['throughput_rows_per_second']:.0f} rows/second")
        logger.info(f"Peak memory usage: {summary['peak_memory_mb']:.2f} MB")
        logger.info("=" * 60)

    def _get_memory_usage_mb(self) -> float:
        """Get current resident memory in MB."""
        try:
            return self._process.memory_info().rss / (1024 * 1024)
        except psutil.Error as e:
            logger.debug(f"Could not get memory usage: {e}")
            return self.peak_memory_mb


@contextmanager
def monitor_performance(name: str = "Pipeline",
                        total_chunks_estimate: int = 0,
                        log_interval: int = 100,
                        callback: Optional[ProgressCallback] = None):
    """
    Context manager for easy progress monitoring.

    Args:
        name (str): Name for this run
        total_chunks_estimate (int): Estimated number of chunks
        log_interval (int): Log progress every N chunks
        callback (callable): Optional per-chunk snapshot receiver

    Yields:
        ProgressTracker: Tracker instance
    """
    tracker = ProgressTracker(name, total_chunks_estimate, log_interval, callback)
    tracker.start_monitoring()
    try:
        yield tracker
    finally:
        tracker.stop_monitoring()


def get_system_stats() -> Dict[str, Any]:
    """Get current system resource statistics."""
    memory = psutil.virtual_memory()
    disk = psutil.disk_usage(os.getcwd())
    return {
        'cpu_count': psutil.cpu_count(),
        'memory_total_gb': memory.total / (1024 ** 3),
        'memory_available_gb': memory.available / (1024 ** 3),
        'memory_used_percent': memory.percent,
        'disk_free_gb': disk.free / (1024 ** 3)
    }
