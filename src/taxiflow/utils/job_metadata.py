# ========================
# src/taxiflow/utils/job_metadata.py
# ========================

"""
Job Metadata Management

Handles persistent storage and discovery of pipeline job records.
"""

import json
import logging
import os
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Any

logger = logging.getLogger(__name__)


class JobMetadataManager:
    """Manages persistent job metadata storage."""

    def __init__(self, metadata_file: str = "data/job_metadata.json"):
        self.metadata_file = Path(metadata_file)

    def save_job_metadata(self, jobs: Dict[str, Dict[str, Any]]) -> None:
        """Save all job metadata, replacing the previous file atomically."""
        self.metadata_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_file = self.metadata_file.with_suffix('.json.tmp')
        try:
            with open(tmp_file, 'w') as f:
                json.dump(jobs, f, indent=2, default=str)
            os.replace(tmp_file, self.metadata_file)
            logger.debug(f"Saved job metadata for {len(jobs)} jobs")
        except OSError as e:
            logger.error(f"Failed to save job metadata: {e}")

    def load_job_metadata(self) -> Dict[str, Dict[str, Any]]:
        """Load job metadata from persistent storage."""
        if not self.metadata_file.exists():
            return {}
        try:
            with open(self.metadata_file, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load job metadata: {e}")
            return {}
        logger.info(f"Loaded metadata for {len(data)} persisted jobs")
        return data

    def discover_existing_jobs(self, processed_dir: str) -> Dict[str, Dict[str, Any]]:
        """
        Discover finished jobs from job output directories that are missing
        from the metadata file (e.g. after it was deleted).
        """
        discovered = {}
        root = Path(processed_dir)
        if not root.exists():
            return discovered

        for job_dir in root.iterdir():
            if not job_dir.is_dir() or not self._is_valid_uuid(job_dir.name):
                continue
            summary_file = job_dir / "summary.json"
            status = "completed" if summary_file.exists() else "unknown"
            marker = summary_file if summary_file.exists() else job_dir
            completed_at = datetime.fromtimestamp(marker.stat().st_mtime).isoformat()

            discovered[job_dir.name] = {
                'job_id': job_dir.name,
                'filename': 'unknown_file.csv',
                'status': status,
                'created_at': completed_at,
                'completed_at': completed_at,
                'output_dir': str(job_dir),
                'type': 'discovered',
                'results': {'saved_files': self._get_saved_files(job_dir)}
            }

        if discovered:
            logger.info(f"Discovered {len(discovered)} existing jobs in {root}")
        return discovered

    def _is_valid_uuid(self, uuid_string: str) -> bool:
        try:
            uuid.UUID(uuid_string)
            return True
        except ValueError:
            return False

    def _get_saved_files(self, job_dir: Path) -> Dict[str, str]:
        """Map each CSV/JSON file of a job directory to its report name."""
        return {
            path.stem: str(path)
            for pattern in ("*.csv", "*.json")
            for path in sorted(job_dir.glob(pattern))
        }
