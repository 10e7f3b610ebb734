import json
import unittest

import httpx

from allocation_survey.core.exceptions import SubmissionError
from allocation_survey.services.submission import SAVE_FAILED_MESSAGE, IngestClient

URL = "http://ingest.test/api/appendRow"


class IngestClientTests(unittest.TestCase):
    def test_posts_headers_and_row_with_api_key(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        IngestClient(URL, "secret", transport=httpx.MockTransport(handler)).send(["a", "b"], {"a": 1, "b": "x"})
        self.assertEqual(len(seen), 1)
        self.assertEqual(seen[0].method, "POST")
        self.assertEqual(seen[0].headers["x-api-key"], "secret")
        self.assertEqual(json.loads(seen[0].content), {"headers": ["a", "b"], "row": {"a": 1, "b": "x"}})

    def test_non_2xx_raises_with_status(self):
        def handler(request):
            return httpx.Response(401, json={"ok": False, "error": "Unauthorized"})

        client = IngestClient(URL, "wrong", transport=httpx.MockTransport(handler))
        with self.assertRaises(SubmissionError) as ctx:
            client.send(["a"], {"a": 1})
        self.assertEqual(ctx.exception.status_code, 401)
        self.assertIn("Unauthorized", str(ctx.exception))

    def test_network_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = IngestClient(URL, "secret", transport=httpx.MockTransport(handler))
        with self.assertRaises(SubmissionError) as ctx:
            client.send(["a"], {"a": 1})
        self.assertIsNone(ctx.exception.status_code)
        self.assertEqual(str(ctx.exception), SAVE_FAILED_MESSAGE)


if __name__ == "__main__":
    unittest.main()
