"""Send one respondent's wide row to the ingestion endpoint.

One blocking round-trip, never retried automatically: the endpoint has no
dedup beyond a single accepted insert, so retry is left to the respondent.
"""
import logging
from typing import Any

import httpx

from allocation_survey.core.exceptions import SubmissionError

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "Saving failed. Please check your connection and retry."


class IngestClient:
    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def send(self, headers: list[str], row: dict[str, Any]) -> None:
        """POST ``{headers, row}``; network errors and non-2xx raise SubmissionError."""
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                res = client.post(
                    self.url,
                    json={"headers": headers, "row": row},
                    headers={"x-api-key": self.api_key},
                )
        except httpx.HTTPError as exc:
            logger.warning("Final submission failed: %s", type(exc).__name__)
            raise SubmissionError(SAVE_FAILED_MESSAGE) from exc

        if not res.is_success:
            detail = res.reason_phrase
            try:
                body = res.json()
                if isinstance(body, dict) and body.get("error"):
                    detail = body["error"]
            except ValueError:
                pass
            logger.warning("Final submission rejected status=%s detail=%s", res.status_code, detail)
            raise SubmissionError(f"{SAVE_FAILED_MESSAGE} ({detail})", status_code=res.status_code)
        logger.info("Final submission accepted status=%s", res.status_code)
