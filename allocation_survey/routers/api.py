"""Respondent API: one cookie-identified survey session per browser."""
import uuid
from collections.abc import AsyncIterator, Callable
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from starlette.concurrency import run_in_threadpool

from allocation_survey.core.config import get_settings
from allocation_survey.schemas.demographics import DemographicsSchema
from allocation_survey.schemas.survey import (
    AllocationInSchema,
    FinalSubmitSchema,
    FollowupOutSchema,
    OptionSchema,
    OutcomesSchema,
    ReasonSubmitSchema,
    SanitySubmitSchema,
    ScenarioOutSchema,
    StartSessionSchema,
    SurveyStateSchema,
)
from allocation_survey.services.allocation import amount_in_a, amount_in_b
from allocation_survey.services.followups import FINAL_FACTORS, FollowupState
from allocation_survey.services.session import SessionConfig, SessionRegistry, SurveySession

router = APIRouter(prefix="/api/survey", tags=["survey"])
settings = get_settings()


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_session_id(request: Request) -> str:
    sid = request.cookies.get(settings.session_cookie_name)
    if not sid:
        raise HTTPException(status_code=404, detail="No survey session; start one first")
    return sid


async def get_survey_session(
    sid: Annotated[str, Depends(get_session_id)],
    registry: Annotated[SessionRegistry, Depends(get_registry)],
) -> AsyncIterator[SurveySession]:
    """Yield the respondent's session with its lock held for the whole request."""
    async with registry.lock_for(sid):
        session = await run_in_threadpool(registry.get, sid)
        if session is None:
            raise HTTPException(status_code=404, detail="Survey session not found")
        yield session


SessionDep = Annotated[SurveySession, Depends(get_survey_session)]


def _followup_out(session: SurveySession) -> FollowupOutSchema:
    fu = session.followups
    out = FollowupOutSchema(state=fu.state.value)
    if fu.state in (FollowupState.SANITY, FollowupState.MID_SANITY):
        out.options = [OptionSchema(key=k, label=label) for k, label in fu.options()]
    elif fu.state is FollowupState.FINAL:
        out.change_label = fu.change_label()
        out.prompt = fu.comparison().prompt(session.config.currency)
        out.factors = list(FINAL_FACTORS)
    return out


def build_state(sid: str, session: SurveySession) -> SurveyStateSchema:
    cur = session.current
    alloc = session.allocation
    outcomes = session.outcomes()
    return SurveyStateSchema(
        session_id=sid,
        index=session.index,
        length=len(session.flow),
        furthest_visited_index=session.progress.furthest_visited_index,
        percent_done=session.progress.percent_done,
        is_viewing_past=session.is_viewing_past,
        is_complete=session.progress.is_complete,
        scenario=ScenarioOutSchema.model_validate(cur) if cur is not None else None,
        allocation=alloc.value,
        option_a_percent=alloc.option_a_percent,
        option_b_percent=alloc.option_b_percent,
        amount_in_a=amount_in_a(session.config.amount, alloc.value),
        amount_in_b=amount_in_b(session.config.amount, alloc.value),
        panel_unlocked=alloc.panel_unlocked,
        can_unlock=alloc.can_unlock and cur is not None,
        has_touched=alloc.has_touched,
        confirmed=alloc.confirmed,
        controls_locked=alloc.controls_locked,
        confirm_disabled=alloc.confirm_disabled,
        outcomes=OutcomesSchema.model_validate(outcomes) if outcomes is not None else None,
        followup=_followup_out(session),
        currency=session.config.currency,
        amount=session.config.amount,
        ghost=session.ghost,
        finished=session.finished,
        completion_code=session.completion_code if session.finished else None,
    )


async def run_step(sid: str, session: SurveySession, step: Callable[..., Any], *args, **kwargs) -> SurveyStateSchema:
    """Apply one session operation and read back the state, off the event loop."""

    def work() -> SurveyStateSchema:
        step(*args, **kwargs)
        return build_state(sid, session)

    return await run_in_threadpool(work)


def _new_config(request: Request, body: StartSessionSchema) -> SessionConfig:
    return SessionConfig(
        seed=body.seed if body.seed is not None else settings.default_pool_seed,
        group_key=body.group_key,
        block_order=body.block_order,
        pool_tag=settings.pool_tag,
        amount=settings.total_amount,
        currency=settings.currency,
        default_allocation=settings.default_allocation,
        storage_name=settings.storage_name,
        reason_tags=list(settings.reason_required_tags),
        reason_min_length=settings.reason_min_length,
        mid_index=settings.mid_sanity_index,
        completion_code=body.completion_code,
        user_agent=request.headers.get("user-agent", ""),
    )


@router.post("/session", response_model=SurveyStateSchema)
async def start_session(
    request: Request,
    response: Response,
    body: StartSessionSchema,
    registry: Annotated[SessionRegistry, Depends(get_registry)],
):
    """Start a survey, or resume the one the cookie already points at."""
    sid = request.cookies.get(settings.session_cookie_name)
    if sid:
        async with registry.lock_for(sid):
            session = await run_in_threadpool(registry.get, sid)
            if session is not None:
                return await run_in_threadpool(build_state, sid, session)

    sid = str(uuid.uuid4())
    config = _new_config(request, body)
    async with registry.lock_for(sid):
        session = await run_in_threadpool(registry.create, sid, config)
        state = await run_in_threadpool(build_state, sid, session)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=sid,
        max_age=settings.session_cookie_max_age,
        httponly=True,
        samesite="lax",
    )
    return state


@router.get("/state", response_model=SurveyStateSchema)
async def get_state(sid: Annotated[str, Depends(get_session_id)], session: SessionDep):
    return await run_in_threadpool(build_state, sid, session)


@router.post("/demographics", response_model=SurveyStateSchema)
async def submit_demographics(
    body: DemographicsSchema,
    sid: Annotated[str, Depends(get_session_id)],
    session: SessionDep,
):
    return await run_step(sid, session, session.save_demographics, body.model_dump())


@router.post("/unlock", response_model=SurveyStateSchema)
async def unlock(sid: Annotated[str, Depends(get_session_id)], session: SessionDep):
    return await run_step(sid, session, session.unlock)


@router.post("/allocation", response_model=SurveyStateSchema)
async def set_allocation(
    body: AllocationInSchema,
    sid: Annotated[str, Depends(get_session_id)],
    session: SessionDep,
):
    return await run_step(
        sid,
        session,
        session.set_allocation,
        option_b=body.option_b,
        option_a=body.option_a,
        drag=body.drag,
        key=body.key,
        shift=body.shift,
    )


@router.post("/confirm", response_model=SurveyStateSchema)
async def confirm(sid: Annotated[str, Depends(get_session_id)], session: SessionDep):
    return await run_step(sid, session, session.confirm)


@router.post("/followups/reason", response_model=SurveyStateSchema)
async def submit_reason(
    body: ReasonSubmitSchema,
    sid: Annotated[str, Depends(get_session_id)],
    session: SessionDep,
):
    return await run_step(sid, session, session.submit_reason, body.text)


@router.post("/followups/sanity", response_model=SurveyStateSchema)
async def submit_sanity(
    body: SanitySubmitSchema,
    sid: Annotated[str, Depends(get_session_id)],
    session: SessionDep,
):
    return await run_step(sid, session, session.submit_sanity, body.primary, body.secondary, body.other_text)


@router.post("/followups/mid-sanity", response_model=SurveyStateSchema)
async def submit_mid_sanity(
    body: SanitySubmitSchema,
    sid: Annotated[str, Depends(get_session_id)],
    session: SessionDep,
):
    return await run_step(sid, session, session.submit_mid_sanity, body.primary, body.secondary, body.other_text)


@router.post("/followups/break", response_model=SurveyStateSchema)
async def continue_from_break(sid: Annotated[str, Depends(get_session_id)], session: SessionDep):
    return await run_step(sid, session, session.continue_from_break)


def _final_then_submit(session: SurveySession, body: FinalSubmitSchema) -> None:
    session.submit_final(body.text, body.ratings, body.inflation_effect, body.other_factors)
    if session.progress.is_complete and not session.finished:
        # SubmissionError -> 502; answers are kept, POST /submit retries
        session.submit()


@router.post("/followups/final", response_model=SurveyStateSchema)
async def submit_final(
    body: FinalSubmitSchema,
    sid: Annotated[str, Depends(get_session_id)],
    session: SessionDep,
):
    """Store the final battery; when that completes the flow, submit right away."""
    return await run_step(sid, session, _final_then_submit, session, body)


@router.post("/back", response_model=SurveyStateSchema)
async def go_back(sid: Annotated[str, Depends(get_session_id)], session: SessionDep):
    return await run_step(sid, session, session.go_back)


@router.post("/forward", response_model=SurveyStateSchema)
async def go_forward(sid: Annotated[str, Depends(get_session_id)], session: SessionDep):
    return await run_step(sid, session, session.go_forward)


@router.post("/submit", response_model=SurveyStateSchema)
async def submit(sid: Annotated[str, Depends(get_session_id)], session: SessionDep):
    """Manual (re)submission after a failed save."""
    return await run_step(sid, session, session.submit)
