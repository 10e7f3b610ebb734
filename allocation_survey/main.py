"""Allocation Survey - FastAPI app entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from allocation_survey.core.config import get_settings
from allocation_survey.core.exceptions import (
    ControlsLockedError,
    NavigationBlockedError,
    SubmissionError,
    SurveyValidationError,
)
from allocation_survey.core.logging_config import configure_logging
from allocation_survey.db.base import Base
from allocation_survey.db.session import SessionLocal, engine
from allocation_survey.middleware.request_logging import RequestLoggingMiddleware
from allocation_survey.routers import admin, api, ingest
from allocation_survey.services.session import SessionRegistry
from allocation_survey.services.storage import SqlKeyValueStore
from allocation_survey.services.submission import IngestClient

logger = logging.getLogger(__name__)
settings = get_settings()


def make_ingest_client() -> IngestClient:
    return IngestClient(settings.ingest_url, settings.ingest_secret, settings.ingest_timeout)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await run_in_threadpool(Base.metadata.create_all, bind=engine)
    app.state.registry = SessionRegistry(
        SqlKeyValueStore(SessionLocal), submitter_factory=make_ingest_client
    )
    logger.info("%s started", settings.app_name)
    yield


app = FastAPI(
    title=settings.app_name,
    description="Two-option portfolio allocation survey",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or ["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(api.router)
app.include_router(admin.router)
app.include_router(ingest.router)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
        for e in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": "Invalid input", "errors": errors})


@app.exception_handler(NavigationBlockedError)
@app.exception_handler(ControlsLockedError)
async def conflict_handler(request: Request, exc: SurveyValidationError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(SurveyValidationError)
async def survey_validation_handler(request: Request, exc: SurveyValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(SubmissionError)
async def submission_handler(request: Request, exc: SubmissionError):
    return JSONResponse(
        status_code=502,
        content={"ok": False, "error": str(exc), "retry": True},
    )


@app.exception_handler(Exception)
async def fault_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Something went wrong while preparing this screen. Your answers are saved."},
    )


@app.get("/health")
async def health():
    return {"status": "ok"}
