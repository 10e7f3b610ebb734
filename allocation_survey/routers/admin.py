"""Admin side channel: privileged navigation for a running respondent session."""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException
from starlette.concurrency import run_in_threadpool

from allocation_survey.core.security import verify_admin_token
from allocation_survey.routers.api import build_state, get_registry
from allocation_survey.schemas.survey import AdminCommandSchema
from allocation_survey.services.session import AdminChannel, SessionRegistry, SurveySession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def require_admin(x_admin_token: Annotated[str | None, Header()] = None) -> str:
    subject = verify_admin_token(x_admin_token)
    if subject is None:
        raise HTTPException(status_code=401, detail="Invalid or expired admin token")
    return subject


def _dispatch(sid: str, session: SurveySession, command: AdminCommandSchema) -> dict:
    result = AdminChannel(session).dispatch(command.model_dump(exclude_none=True))
    return {"ok": True, "result": result, "state": build_state(sid, session)}


@router.post("/sessions/{sid}/commands")
async def run_command(
    sid: str,
    body: AdminCommandSchema,
    admin: Annotated[str, Depends(require_admin)],
    registry: Annotated[SessionRegistry, Depends(get_registry)],
):
    """Apply prev / next / jump / finish / ghost to one session."""
    async with registry.lock_for(sid):
        session = await run_in_threadpool(registry.get, sid)
        if session is None:
            raise HTTPException(status_code=404, detail="Survey session not found")
        out = await run_in_threadpool(_dispatch, sid, session, body)
    logger.info("Admin %s ran %s on session %s", admin, body.type, sid[:8], extra={"sid": sid[:8]})
    return out
