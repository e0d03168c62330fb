# ========================
# api_server.py
# ========================

"""
FastAPI Server for the Taxi Trip Pipeline

Provides REST API endpoints for uploading trip files, triggering pipeline runs
and following their progress.
"""

import asyncio
import logging
import shutil
import sys
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
import uvicorn

# Add src to Python path
sys.path.insert(0, str(Path(__file__).parent / 'src'))

from taxiflow import __version__
from taxiflow.pipeline import Dataset, Schema, TAXI_TRIP_SCHEMA, run_trip_analysis, validate_input
from taxiflow.utils import (
    CancellationToken, Cancelled, Config, JobMetadataManager, TaxiTripGenerator, setup_logging,
)
from taxiflow.utils.performance_monitor import get_system_stats

logger = logging.getLogger(__name__)

# Constants
JOB_NOT_FOUND_MSG = "Job not found"
JOB_NOT_COMPLETED_MSG = "Job not completed yet"
ACTIVE_STATUSES = ('queued', 'processing')


class PipelineJobManager:
    """Tracks pipeline jobs, runs them in background threads and persists their status."""

    def __init__(self, config: Config):
        self.config = config
        paths = config.get_data_paths()
        self.raw_dir = paths['raw_data_dir']
        self.upload_dir = paths['uploaded_data_dir']
        self.processed_dir = paths['processed_data_dir']
        self.metadata = JobMetadataManager(str(paths['metadata_file']))
        self.schema = Schema.from_json_file(config.SCHEMA_FILE) if config.SCHEMA_FILE else TAXI_TRIP_SCHEMA

        self._lock = threading.Lock()
        self._save_lock = threading.Lock()
        self._tokens: Dict[str, CancellationToken] = {}
        self._slots = threading.BoundedSemaphore(max(1, config.API_MAX_CONCURRENT_JOBS))
        self.jobs: Dict[str, Dict[str, Any]] = self._initialize_job_status()

    def _initialize_job_status(self) -> Dict[str, Dict[str, Any]]:
        """Load saved metadata and add finished jobs found on disk."""
        jobs = self.metadata.load_job_metadata()
        for job_id, job_data in self.metadata.discover_existing_jobs(str(self.processed_dir)).items():
            if job_id not in jobs:
                jobs[job_id] = job_data
                logger.info(f"Added discovered job {job_id}")

        # Jobs interrupted by a restart will never finish
        for job in jobs.values():
            if job.get('status') in ACTIVE_STATUSES:
                job['status'] = 'failed'
                job['error'] = 'Interrupted by server restart'
        return jobs

    def persist_job_status(self) -> None:
        """Save current job status to persistent storage."""
        with self._save_lock:
            with self._lock:
                snapshot = {job_id: dict(job) for job_id, job in self.jobs.items()}
            self.metadata.save_job_metadata(snapshot)

    def create_job(self, job_type: str, **fields) -> Dict[str, Any]:
        job_id = str(uuid.uuid4())
        job = {
            'job_id': job_id,
            'type': job_type,
            'status': 'queued',
            'created_at': datetime.now().isoformat(),
            'output_dir': str(self.processed_dir / job_id),
            **fields
        }
        with self._lock:
            self.jobs[job_id] = job
            self._tokens[job_id] = CancellationToken(self.config.timeout)
        self.persist_job_status()
        return dict(job)

    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            job = self.jobs.get(job_id)
            return dict(job) if job is not None else None

    def list_jobs(self):
        with self._lock:
            return [dict(job) for job in self.jobs.values()]

    def update_job(self, job_id: str, **fields) -> None:
        with self._lock:
            # The job may have been deleted while running
            if job_id in self.jobs:
                self.jobs[job_id].update(fields)

    def cancel(self, job_id: str) -> bool:
        """Request cancellation of a queued or running job."""
        with self._lock:
            token = self._tokens.get(job_id)
        if token is None:
            return False
        token.cancel()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    def delete(self, job_id: str) -> bool:
        """
        Cancel a job if it is active, then remove it and its files.
        Returns False when the job was already gone.
        """
        self.cancel(job_id)
        with self._lock:
            job = self.jobs.pop(job_id, None)
        if job is None:
            return False

        input_file = Path(job['input_file']) if job.get('input_file') else None
        if input_file is not None and input_file.exists():
            input_file.unlink()
        output_dir = Path(job['output_dir'])
        if output_dir.exists():
            shutil.rmtree(output_dir)
        self.persist_job_status()
        return True

    def run_pipeline(self, job_id: str, input_file: str, chunk_size: int,
                     generate_rows: Optional[int] = None) -> None:
        """Run the trip analysis for one job (in a background thread)."""
        token = self._tokens.get(job_id)
        if token is None:
            return
        with self._slots:
            try:
                token.check()
                logger.info(f"Starting pipeline job {job_id}")
                self.update_job(job_id, status='processing', started_at=datetime.now().isoformat())

                if generate_rows:
                    generator = TaxiTripGenerator(seed=42)
                    generation_stats = generator.generate_dataset(
                        file_path=input_file,
                        num_rows=generate_rows,
                        error_rate=self.config.SAMPLE_ERROR_RATE
                    )
                    self.update_job(job_id, generation_stats=generation_stats)

                source = Dataset(Path(input_file), self.schema, delimiter=self.config.INPUT_DELIMITER)
                if not validate_input(source):
                    raise ValueError("Input file validation failed")

                results = run_trip_analysis(
                    input_file,
                    str(self.processed_dir / job_id),
                    config=self.config,
                    schema=self.schema,
                    chunk_size=chunk_size,
                    cancel_token=token,
                    progress_callback=lambda snapshot: self.update_job(job_id, progress=snapshot)
                )

                self.update_job(job_id, status='completed',
                                completed_at=datetime.now().isoformat(), results=results)
                logger.info(f"Pipeline job {job_id} completed successfully")

            except Cancelled as e:
                logger.warning(f"Pipeline job {job_id} cancelled: {e}")
                self.update_job(job_id, status='cancelled', error=str(e),
                                cancelled_at=datetime.now().isoformat())
            except Exception as e:
                logger.error(f"Pipeline job {job_id} failed: {e}")
                self.update_job(job_id, status='failed', error=str(e),
                                failed_at=datetime.now().isoformat())
            finally:
                with self._lock:
                    self._tokens.pop(job_id, None)
                self.persist_job_status()


def create_app(config: Optional[Config] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        config (Config): Configuration object; data and metadata live under
            its DATA_DIR

    Returns:
        FastAPI: Application with a job manager attached as ``app.state.jobs``
    """
    config = config or Config()
    manager = PipelineJobManager(config)

    app = FastAPI(
        title="Taxi Trip Pipeline API",
        description="Upload and process taxi trip files through an out-of-core pipeline",
        version=__version__
    )
    app.state.jobs = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _get_job_or_404(job_id: str) -> Dict[str, Any]:
        job = manager.get(job_id)
        if job is None:
            raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_MSG)
        return job

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "message": "Taxi Trip Pipeline API",
            "version": __version__,
            "endpoints": {
                "upload": "/upload - Upload a trip CSV file",
                "run_pipeline": "/run-pipeline - Generate a sample and run the pipeline",
                "status": "/status/{job_id} - Check job status and progress",
                "jobs": "/jobs - List all jobs",
                "cancel": "/jobs/{job_id}/cancel - Cancel a running job",
                "download": "/download/{job_id}?file_type=... - Download a dataset or report",
                "health": "/health - Health check",
                "api_docs": "/docs - API documentation"
            }
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "active_jobs": len([j for j in manager.list_jobs() if j['status'] in ACTIVE_STATUSES]),
            "system": get_system_stats()
        }

    @app.post("/upload")
    async def upload_file(
        background_tasks: BackgroundTasks,
        file: UploadFile = File(...),
        chunk_size: int = Query(10000, description="Number of rows to process per chunk", ge=100, le=1000000)
    ):
        """
        Upload a trip CSV file and trigger the pipeline.

        Args:
            file: CSV file with the declared trip columns
            chunk_size: Number of rows to process per chunk

        Returns:
            dict: Job ID and status information
        """
        if not file.filename or not file.filename.lower().endswith('.csv'):
            raise HTTPException(status_code=400, detail="Only CSV files are supported")

        content = await file.read()
        file_name = Path(file.filename).name

        job = manager.create_job('upload', filename=file_name, chunk_size=chunk_size,
                                 file_size=len(content))
        job_id = job['job_id']
        file_path = manager.upload_dir / f"{job_id}_{file_name}"

        def write_file():
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "wb") as buffer:
                buffer.write(content)

        try:
            await asyncio.get_running_loop().run_in_executor(None, write_file)
        except OSError as e:
            manager.delete(job_id)
            logger.error(f"Upload failed: {e}")
            raise HTTPException(status_code=500, detail=f"Upload failed: {e}")

        manager.update_job(job_id, input_file=str(file_path))
        manager.persist_job_status()
        background_tasks.add_task(manager.run_pipeline, job_id, str(file_path), chunk_size)

        logger.info(f"Started pipeline job {job_id} for file {file_name}")
        return {
            "job_id": job_id,
            "filename": file_name,
            "status": "queued",
            "message": "File uploaded successfully. Pipeline processing started.",
            "estimated_processing_info": "Use /status/{job_id} to check progress"
        }

    @app.post("/run-pipeline")
    async def run_pipeline(
        background_tasks: BackgroundTasks,
        num_rows: int = Query(10000, description="Number of synthetic trips to generate", ge=1, le=100000000),
        chunk_size: int = Query(10000, description="Number of rows to process per chunk", ge=100, le=1000000)
    ):
        """Generate a synthetic trip sample and run the pipeline over it."""
        job = manager.create_job('generated', filename=f"taxi_trips_{num_rows}.csv",
                                 num_rows=num_rows, chunk_size=chunk_size)
        job_id = job['job_id']
        input_file = str(manager.raw_dir / f"taxi_trips_{job_id}.csv")
        manager.update_job(job_id, input_file=input_file)

        background_tasks.add_task(manager.run_pipeline, job_id, input_file, chunk_size, num_rows)

        logger.info(f"Started generated-sample job {job_id} with {num_rows:,} rows")
        return {
            "job_id": job_id,
            "status": "queued",
            "num_rows": num_rows,
            "chunk_size": chunk_size,
            "message": "Pipeline started. Use /status/{job_id} to check progress"
        }

    @app.get("/status/{job_id}")
    async def get_job_status(job_id: str):
        """
        Get the status of a pipeline job.

        Args:
            job_id: Unique job identifier

        Returns:
            dict: Job status, live progress and results
        """
        job = _get_job_or_404(job_id)

        if job['status'] == 'completed' and 'results' in job:
            results = job['results']
            job['summary'] = {
                'records_processed': results.get('processing_stats', {}).get('records_processed', 0),
                'output_files': len(results.get('saved_files', {})),
                'data_quality_rate': results.get('data_quality_stats', {}).get('success_rate', 0)
            }
        return job

    @app.get("/jobs")
    async def list_jobs(
        status: Optional[str] = Query(None, description="Filter by status: queued, processing, completed, failed, cancelled"),
        limit: int = Query(50, description="Maximum number of jobs to return", ge=1, le=100)
    ):
        """List pipeline jobs, newest first, with optional filtering."""
        all_jobs = manager.list_jobs()
        jobs = [job for job in all_jobs if job['status'] == status] if status else all_jobs
        jobs.sort(key=lambda x: x['created_at'], reverse=True)
        jobs = jobs[:limit]

        return {
            "jobs": jobs,
            "total_count": len(all_jobs),
            "filtered_count": len(jobs)
        }

    @app.post("/jobs/{job_id}/cancel")
    async def cancel_job(job_id: str):
        """Cancel a queued or running job."""
        job = _get_job_or_404(job_id)
        if not manager.cancel(job_id):
            raise HTTPException(status_code=409, detail=f"Job is not active (status: {job['status']})")
        return {"job_id": job_id, "message": "Cancellation requested"}

    @app.get("/download/{job_id}")
    async def download_results(job_id: str, file_type: str = Query(..., description="Type of file to download")):
        """
        Download a dataset or report of a completed job.

        Args:
            job_id: Unique job identifier
            file_type: Name of the saved file (e.g. 'clean_trips', 'numeric_summary')

        Returns:
            FileResponse: The requested file
        """
        job = _get_job_or_404(job_id)
        if job['status'] != 'completed':
            raise HTTPException(status_code=400, detail=JOB_NOT_COMPLETED_MSG)

        saved_files = job.get('results', {}).get('saved_files')
        if not saved_files:
            raise HTTPException(status_code=404, detail="No results available")

        if file_type not in saved_files:
            raise HTTPException(
                status_code=404,
                detail=f"File type '{file_type}' not found. Available types: {list(saved_files.keys())}"
            )

        file_path = Path(saved_files[file_type])
        if not file_path.exists():
            raise HTTPException(status_code=404, detail="File not found on disk")

        return FileResponse(
            path=file_path,
            filename=f"{job_id}_{file_type}{file_path.suffix}",
            media_type='application/octet-stream'
        )

    @app.delete("/jobs/{job_id}")
    async def delete_job(job_id: str):
        """Delete a job and its associated files, cancelling it first if active."""
        _get_job_or_404(job_id)
        try:
            deleted = manager.delete(job_id)
        except OSError as e:
            logger.error(f"Failed to delete job {job_id}: {e}")
            raise HTTPException(status_code=500, detail=f"Failed to delete job: {e}")
        if not deleted:
            raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_MSG)

        logger.info(f"Deleted job {job_id} and associated files")
        return {"message": f"Job {job_id} and associated files deleted successfully"}

    return app


app = create_app()


def start_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Start the API server with uvicorn."""
    config = Config()
    setup_logging(log_level=config.LOG_LEVEL, log_file="api_server.log", log_dir=config.LOG_DIR)
    uvicorn.run(app, host=host or config.API_HOST, port=port or config.API_PORT)


if __name__ == "__main__":
    start_server()
