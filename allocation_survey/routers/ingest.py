"""CSV collector: appends one wide row per finished respondent."""
import csv
import json
import logging
import threading
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from allocation_survey.core.config import get_settings
from allocation_survey.core.security import verify_ingest_key
from allocation_survey.schemas.ingest import AppendRowSchema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["ingest"])

# One writer at a time so concurrent appends never interleave
_WRITE_LOCK = threading.Lock()


def csv_path() -> Path:
    settings = get_settings()
    return Path(settings.csv_dir) / settings.csv_file


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def append_csv_row(path: Path, headers: list[str], row: dict[str, Any]) -> None:
    """Append ``row`` ordered by ``headers``; the header line is written only for a new file."""
    with _WRITE_LOCK:
        path.parent.mkdir(parents=True, exist_ok=True)
        is_new = not path.exists() or path.stat().st_size == 0
        with path.open("a", newline="", encoding="utf-8") as f:
            writer = csv.writer(f, quoting=csv.QUOTE_ALL)
            if is_new:
                writer.writerow(headers)
            writer.writerow([_cell(row.get(h)) for h in headers])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


@router.get("/health")
async def ingest_health():
    return {"ok": True}


@router.post("/appendRow")
async def append_row(request: Request):
    if not verify_ingest_key(request.headers.get("x-api-key")):
        return _error(401, "Unauthorized")

    try:
        payload = AppendRowSchema.model_validate(await request.json())
    except (ValueError, ValidationError):
        return _error(400, "Bad payload")

    try:
        # file I/O and the write lock stay off the event loop
        await run_in_threadpool(append_csv_row, csv_path(), payload.headers, payload.row)
    except OSError:
        logger.exception("CSV append failed")
        return _error(500, "Server error")

    logger.info("Row appended columns=%s", len(payload.headers))
    return {"ok": True}
