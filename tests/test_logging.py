import json
import logging
import unittest

from fastapi.testclient import TestClient

from allocation_survey.core.config import get_settings
from allocation_survey.core.logging_config import JsonFormatter, configure_logging
from allocation_survey.main import app
from allocation_survey.middleware.request_logging import status_level

MIDDLEWARE_LOGGER = "allocation_survey.middleware.request_logging"


class JsonFormatterTests(unittest.TestCase):
    def make_record(self, **extra):
        record = logging.LogRecord("allocation_survey.test", logging.INFO, __file__, 1, "row %s stored", (7,), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_context_fields_are_included(self):
        line = json.loads(JsonFormatter().format(self.make_record(sid="abcd1234", order=7)))
        self.assertEqual(line["message"], "row 7 stored")
        self.assertEqual(line["level"], "INFO")
        self.assertEqual(line["sid"], "abcd1234")
        self.assertEqual(line["order"], 7)
        self.assertNotIn("index", line)

    def test_unset_context_is_left_out(self):
        line = json.loads(JsonFormatter().format(self.make_record(sid=None)))
        self.assertNotIn("sid", line)


class ConfigureLoggingTests(unittest.TestCase):
    def setUp(self):
        self.root = logging.getLogger()
        self.saved = (self.root.level, self.root.handlers[:])

    def tearDown(self):
        level, handlers = self.saved
        for h in self.root.handlers[:]:
            self.root.removeHandler(h)
        for h in handlers:
            self.root.addHandler(h)
        self.root.setLevel(level)

    def test_single_handler_with_requested_format(self):
        configure_logging("debug", json_lines=True)
        configure_logging("debug", json_lines=True)
        self.assertEqual(len(self.root.handlers), 1)
        self.assertEqual(self.root.level, logging.DEBUG)
        self.assertIsInstance(self.root.handlers[0].formatter, JsonFormatter)

    def test_unknown_level_falls_back_to_info(self):
        configure_logging("chatty", json_lines=False)
        self.assertEqual(self.root.level, logging.INFO)
        self.assertNotIsInstance(self.root.handlers[0].formatter, JsonFormatter)


class RequestLoggingTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(app)

    def test_status_levels(self):
        self.assertEqual(status_level("/api/survey/state", 200), logging.INFO)
        self.assertEqual(status_level("/health", 200), logging.DEBUG)
        self.assertEqual(status_level("/health", 503), logging.ERROR)
        self.assertEqual(status_level("/api/survey/state", 404), logging.WARNING)

    def test_client_error_is_logged_with_session_prefix(self):
        self.client.cookies.set(get_settings().session_cookie_name, "abcdefgh-1234-5678")
        with self.assertLogs(MIDDLEWARE_LOGGER, level="INFO") as logs:
            res = self.client.get("/api/missing?token=secret")
        self.assertEqual(res.status_code, 404)
        record = logs.records[-1]
        self.assertEqual(record.levelno, logging.WARNING)
        self.assertEqual(record.sid, "abcdefgh")
        message = record.getMessage()
        self.assertIn("path=/api/missing", message)
        self.assertIn("status=404", message)
        self.assertNotIn("secret", message)


if __name__ == "__main__":
    unittest.main()
