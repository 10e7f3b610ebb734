"""Shared-secret checks for ingestion and signed tokens for the admin side-channel."""
import base64
import hmac
import hashlib
import time

from allocation_survey.core.config import get_settings


def _secret_bytes() -> bytes:
    settings = get_settings()
    return settings.secret_key.encode("utf-8")


# Admin token: base64(admin:subject:timestamp).hmac
def _sign_payload(payload: bytes) -> str:
    sig = hmac.new(_secret_bytes(), payload, hashlib.sha256).hexdigest()
    return base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=") + "." + sig


def _verify_sig(payload: bytes, sig: str) -> bool:
    expected = hmac.new(_secret_bytes(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, sig)


def create_admin_token(subject: str, now: float | None = None) -> str:
    """Create a signed token granting access to administrative commands."""
    ts = int(now if now is not None else time.time())
    payload = f"admin:{subject}:{ts}".encode("utf-8")
    return _sign_payload(payload)


def verify_admin_token(token: str | None, now: float | None = None) -> str | None:
    """Verify signed admin token and return its subject if valid; None otherwise."""
    if not token or "." not in token:
        return None
    try:
        encoded, sig = token.rsplit(".", 1)
        pad = 4 - len(encoded) % 4
        if pad != 4:
            encoded += "=" * pad
        payload = base64.urlsafe_b64decode(encoded)
        if not _verify_sig(payload, sig):
            return None
        kind, rest = payload.decode("utf-8").split(":", 1)
        subject, ts = rest.rsplit(":", 1)
        if kind != "admin":
            return None
        current = now if now is not None else time.time()
        if abs(current - int(ts)) > get_settings().admin_token_max_age:
            return None
        return subject
    except (ValueError, UnicodeDecodeError):
        return None


def verify_ingest_key(provided: str | None) -> bool:
    """Constant-time check of the x-api-key header; an unset secret rejects everything."""
    secret = get_settings().ingest_secret
    if not secret or not provided:
        return False
    return hmac.compare_digest(secret.encode("utf-8"), provided.encode("utf-8"))


def main() -> None:
    """Print an admin token: ``allocation-survey-admin-token <subject>``."""
    import argparse

    parser = argparse.ArgumentParser(description="Issue a signed admin token")
    parser.add_argument("subject", nargs="?", default="admin")
    args = parser.parse_args()
    print(create_admin_token(args.subject))


if __name__ == "__main__":
    main()
