import asyncio
import csv
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient

from allocation_survey.core.config import get_settings
from allocation_survey.main import app

HEADERS = {"x-api-key": "ingest-key"}


class AppendRowTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.settings = get_settings()
        self.saved = (self.settings.ingest_secret, self.settings.csv_dir, self.settings.csv_file)
        self.settings.ingest_secret = "ingest-key"
        self.settings.csv_dir = str(Path(self.tmp) / "data")
        self.settings.csv_file = "responses.csv"
        self.client = TestClient(app)

    def tearDown(self):
        self.settings.ingest_secret, self.settings.csv_dir, self.settings.csv_file = self.saved
        shutil.rmtree(self.tmp, ignore_errors=True)

    def read_csv(self):
        with open(Path(self.tmp) / "data" / "responses.csv", newline="", encoding="utf-8") as f:
            return list(csv.reader(f))

    def test_header_written_once(self):
        body = {"headers": ["resp_id", "allocB__x", "order_vector"], "row": {"resp_id": "P1", "allocB__x": 40}}
        res = self.client.post("/api/appendRow", json=body, headers=HEADERS)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"ok": True})
        body["row"] = {"resp_id": "P2", "order_vector": ["a", "b"]}
        self.assertEqual(self.client.post("/api/appendRow", json=body, headers=HEADERS).status_code, 200)

        lines = self.read_csv()
        self.assertEqual(lines[0], ["resp_id", "allocB__x", "order_vector"])
        self.assertEqual(lines[1], ["P1", "40", ""])
        self.assertEqual(lines[2], ["P2", "", '["a", "b"]'])
        self.assertEqual(len(lines), 3)

    def test_every_field_is_quoted(self):
        body = {"headers": ["a"], "row": {"a": 1}}
        self.client.post("/api/appendRow", json=body, headers=HEADERS)
        raw = (Path(self.tmp) / "data" / "responses.csv").read_text(encoding="utf-8")
        self.assertEqual(raw.splitlines(), ['"a"', '"1"'])

    def test_wrong_key_is_unauthorized(self):
        body = {"headers": ["a"], "row": {"a": 1}}
        res = self.client.post("/api/appendRow", json=body, headers={"x-api-key": "nope"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()["ok"], False)
        self.assertEqual(self.client.post("/api/appendRow", json=body).status_code, 401)

    def test_unset_secret_rejects_all(self):
        self.settings.ingest_secret = ""
        res = self.client.post("/api/appendRow", json={"headers": ["a"], "row": {}}, headers={"x-api-key": ""})
        self.assertEqual(res.status_code, 401)

    def test_malformed_payloads(self):
        cases = [
            {"headers": [], "row": {}},
            {"headers": ["a"], "row": None},
            {"headers": "a", "row": {}},
            {"row": {}},
        ]
        for body in cases:
            res = self.client.post("/api/appendRow", json=body, headers=HEADERS)
            self.assertEqual(res.status_code, 400, body)
        res = self.client.post(
            "/api/appendRow",
            content=b"{not json",
            headers={**HEADERS, "content-type": "application/json"},
        )
        self.assertEqual(res.status_code, 400)

    def test_write_runs_off_the_event_loop(self):
        calls = []

        def record(path, headers, row):
            try:
                asyncio.get_running_loop()
                calls.append("event loop")
            except RuntimeError:
                calls.append("worker thread")

        with mock.patch("allocation_survey.routers.ingest.append_csv_row", side_effect=record):
            res = self.client.post("/api/appendRow", json={"headers": ["a"], "row": {"a": 1}}, headers=HEADERS)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(calls, ["worker thread"])

    def test_write_failure_is_a_server_error(self):
        with mock.patch("allocation_survey.routers.ingest.append_csv_row", side_effect=OSError("disk full")):
            res = self.client.post("/api/appendRow", json={"headers": ["a"], "row": {"a": 1}}, headers=HEADERS)
        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.json(), {"ok": False, "error": "Server error"})

    def test_health(self):
        self.assertEqual(self.client.get("/api/health").json(), {"ok": True})
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})


if __name__ == "__main__":
    unittest.main()
