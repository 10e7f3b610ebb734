import time
import unittest

from allocation_survey.core.config import get_settings
from allocation_survey.core.security import create_admin_token, verify_admin_token, verify_ingest_key


class AdminTokenTests(unittest.TestCase):
    def test_roundtrip(self):
        token = create_admin_token("ops")
        self.assertEqual(verify_admin_token(token), "ops")

    def test_subject_may_contain_colons(self):
        self.assertEqual(verify_admin_token(create_admin_token("team:ops")), "team:ops")

    def test_tampered_token_is_rejected(self):
        token = create_admin_token("ops")
        payload, sig = token.rsplit(".", 1)
        self.assertIsNone(verify_admin_token(payload + "." + "0" * len(sig)))
        self.assertIsNone(verify_admin_token("garbage"))
        self.assertIsNone(verify_admin_token(None))

    def test_expired_token_is_rejected(self):
        issued = time.time() - get_settings().admin_token_max_age - 60
        self.assertIsNone(verify_admin_token(create_admin_token("ops", now=issued)))


class IngestKeyTests(unittest.TestCase):
    def setUp(self):
        self.settings = get_settings()
        self.original = self.settings.ingest_secret

    def tearDown(self):
        self.settings.ingest_secret = self.original

    def test_empty_secret_rejects_everything(self):
        self.settings.ingest_secret = ""
        self.assertFalse(verify_ingest_key(""))
        self.assertFalse(verify_ingest_key("anything"))

    def test_matching_key(self):
        self.settings.ingest_secret = "s3cret"
        self.assertTrue(verify_ingest_key("s3cret"))
        self.assertFalse(verify_ingest_key("s3cre"))
        self.assertFalse(verify_ingest_key(None))


if __name__ == "__main__":
    unittest.main()
