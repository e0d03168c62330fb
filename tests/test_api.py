# ========================
# tests/test_api.py
# ========================

import unittest
import tempfile
import os
import sys
import json
from pathlib import Path

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient

from api_server import create_app
from taxiflow.utils.config import Config
from taxiflow.utils.data_generator import TaxiTripGenerator


class TestAPI(unittest.TestCase):
    """
    API tests through FastAPI's TestClient. Background jobs finish before the
    triggering request returns, so job results can be checked right away.
    """

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self.temp_dir.cleanup)
        self.root = Path(self.temp_dir.name)
        self.config = Config({'data_dir': str(self.root / "data"), 'timeout_seconds': 0})
        self.client = TestClient(create_app(self.config))

    def _trip_file(self, num_rows=300):
        path = self.root / "upload.csv"
        TaxiTripGenerator(seed=11).generate_dataset(str(path), num_rows, error_rate=0.1)
        return path.read_bytes()

    def _upload(self, content, filename="trips.csv", chunk_size=100):
        return self.client.post("/upload", files={"file": (filename, content, "text/csv")},
                                params={"chunk_size": chunk_size})

    def test_root_endpoint(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertIn("message", data)
        self.assertIn("status", data["endpoints"])

    def test_health_endpoint(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["status"], "healthy")
        self.assertEqual(data["active_jobs"], 0)
        self.assertIn("cpu_count", data["system"])

    def test_run_pipeline(self):
        response = self.client.post("/run-pipeline", params={"num_rows": 250, "chunk_size": 100})
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["status"], "queued")

        status = self.client.get(f"/status/{data['job_id']}").json()
        self.assertEqual(status["status"], "completed", status.get("error"))
        self.assertEqual(status["generation_stats"]["total_rows"], 250)
        self.assertEqual(status["results"]["processing_stats"]["rows_imported"], 250)
        self.assertGreater(status["summary"]["records_processed"], 0)
        self.assertIn("chunks_processed", status["progress"])

    def test_upload_and_download(self):
        response = self._upload(self._trip_file())
        self.assertEqual(response.status_code, 200)
        job_id = response.json()["job_id"]

        status = self.client.get(f"/status/{job_id}").json()
        self.assertEqual(status["status"], "completed", status.get("error"))
        self.assertEqual(status["filename"], "trips.csv")

        download = self.client.get(f"/download/{job_id}", params={"file_type": "clean_trips"})
        self.assertEqual(download.status_code, 200)
        header = download.content.decode("utf-8").splitlines()[0]
        self.assertTrue(header.startswith("VendorID,tpep_pickup_datetime"))
        self.assertIn("trip_minutes", header)

        summary = self.client.get(f"/download/{job_id}", params={"file_type": "summary"})
        self.assertIn("daily_fares", json.loads(summary.content))

        missing = self.client.get(f"/download/{job_id}", params={"file_type": "nope"})
        self.assertEqual(missing.status_code, 404)

    def test_upload_rejects_non_csv(self):
        response = self._upload(b"hello", filename="notes.txt")
        self.assertEqual(response.status_code, 400)

    def test_upload_chunk_size_bounds(self):
        response = self._upload(self._trip_file(10), chunk_size=5)
        self.assertEqual(response.status_code, 422)

    def test_upload_with_wrong_columns_fails_job(self):
        response = self._upload(b"a,b\n1,2\n")
        job_id = response.json()["job_id"]

        status = self.client.get(f"/status/{job_id}").json()
        self.assertEqual(status["status"], "failed")
        self.assertIn("validation", status["error"])

        download = self.client.get(f"/download/{job_id}", params={"file_type": "summary"})
        self.assertEqual(download.status_code, 400)

    def test_upload_with_bad_values_fails_job(self):
        content = self._trip_file(20).decode("utf-8").splitlines()
        fields = content[5].split(",")
        fields[10] = "free"  # fare_amount
        content[5] = ",".join(fields)
        response = self._upload("\n".join(content).encode("utf-8"))

        status = self.client.get(f"/status/{response.json()['job_id']}").json()
        self.assertEqual(status["status"], "failed")
        self.assertIn("fare_amount", status["error"])

    def test_list_jobs(self):
        self.client.post("/run-pipeline", params={"num_rows": 50, "chunk_size": 100})
        self._upload(b"a,b\n1,2\n")

        data = self.client.get("/jobs").json()
        self.assertEqual(data["total_count"], 2)

        completed = self.client.get("/jobs", params={"status": "completed"}).json()
        self.assertEqual(completed["filtered_count"], 1)
        self.assertEqual(completed["jobs"][0]["type"], "generated")

        limited = self.client.get("/jobs", params={"limit": 1}).json()
        self.assertEqual(len(limited["jobs"]), 1)

    def test_unknown_job(self):
        self.assertEqual(self.client.get("/status/missing").status_code, 404)
        self.assertEqual(self.client.delete("/jobs/missing").status_code, 404)
        self.assertEqual(self.client.post("/jobs/missing/cancel").status_code, 404)

    def test_cancel_finished_job(self):
        job_id = self.client.post("/run-pipeline", params={"num_rows": 50}).json()["job_id"]
        self.assertEqual(self.client.post(f"/jobs/{job_id}/cancel").status_code, 409)

    def test_delete_job(self):
        job_id = self._upload(self._trip_file(50)).json()["job_id"]
        output_dir = Path(self.client.get(f"/status/{job_id}").json()["output_dir"])
        self.assertTrue(output_dir.exists())

        response = self.client.delete(f"/jobs/{job_id}")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(f"/status/{job_id}").status_code, 404)
        self.assertFalse(output_dir.exists())
        self.assertEqual(list((self.root / "data" / "uploaded").iterdir()), [])

    def test_deleting_a_deleted_job(self):
        job_id = self.client.post("/run-pipeline", params={"num_rows": 20}).json()["job_id"]
        manager = self.client.app.state.jobs

        self.assertTrue(manager.delete(job_id))
        self.assertFalse(manager.delete(job_id))
        self.assertEqual(self.client.delete(f"/jobs/{job_id}").status_code, 404)

    def test_jobs_survive_restart(self):
        job_id = self.client.post("/run-pipeline", params={"num_rows": 50}).json()["job_id"]

        restarted = TestClient(create_app(self.config))

        status = restarted.get(f"/status/{job_id}")
        self.assertEqual(status.status_code, 200)
        self.assertEqual(status.json()["status"], "completed")

    def test_finished_jobs_are_discovered_without_metadata(self):
        job_id = self.client.post("/run-pipeline", params={"num_rows": 50}).json()["job_id"]
        (self.root / "data" / "job_metadata.json").unlink()

        restarted = TestClient(create_app(self.config))

        status = restarted.get(f"/status/{job_id}").json()
        self.assertEqual(status["type"], "discovered")
        self.assertIn("clean_trips", status["results"]["saved_files"])


if __name__ == '__main__':
    unittest.main()
