"""
Logging setup for the survey service.

Plain text lines by default, one JSON object per line when ``LOG_JSON`` is on.
Survey context travels through ``extra=``: a record carrying ``sid``, ``order``
or ``index`` gets those keys in its JSON line. Free-text answers and
participant ids are never logged; session ids only as an 8-character prefix.
"""
import json
import logging
import sys

from allocation_survey.core.config import get_settings

CONTEXT_FIELDS = ("sid", "order", "index", "group")

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info and record.exc_info[0]:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None, json_lines: bool | None = None) -> None:
    """Replace the root handlers with one stdout handler configured from settings."""
    settings = get_settings()
    level_name = (level or settings.log_level or "INFO").upper()
    numeric = getattr(logging, level_name, logging.INFO)
    if json_lines is None:
        json_lines = settings.log_json

    root = logging.getLogger()
    root.setLevel(numeric)
    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric)
    handler.setFormatter(JsonFormatter() if json_lines else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)

    # request lines come from our middleware; uvicorn's duplicate them
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
