"""Generation start and session lookup endpoints."""

import logging

from fastapi import APIRouter, Form, HTTPException, Request
from fastapi.responses import JSONResponse

from backend.jobs import run_generation
from dndbot.registry import is_valid_session_id

from .models import GenerateResponse, SessionStatus

logger = logging.getLogger(__name__)

router = APIRouter()

SESSION_COOKIE = "session_id"
SESSION_HEADER = "X-Session-Id"
COOKIE_MAX_AGE = 24 * 3600


@router.post("/generate", response_model=GenerateResponse)
async def generate(
    request: Request,
    prompt: str = Form(""),
    setting: str = Form(""),
    style: str = Form(""),
):
    """Start generating an adventure; progress goes to /ws/{session_id}."""
    prompt = prompt.strip()
    if not prompt:
        raise HTTPException(400, "Prompt is required")

    state = request.app.state
    client_ip = request.client.host if request.client else "unknown"
    if not state.rate_limiter.hit(client_ip):
        raise HTTPException(429, "Rate limit exceeded, try again later")

    settings = state.settings
    progress = state.registry.create()
    session_id = progress.session_id
    logger.info("[Session %s] Generation requested by %s", session_id, client_ip)

    state.jobs.start(
        run_generation(
            progress,
            state.pipeline,
            prompt,
            settings.output_dir,
            setting=setting.strip() or settings.default_setting(),
            style=style.strip() or settings.default_style(),
        ),
        name=f"generate-{session_id}",
    )

    response = JSONResponse(GenerateResponse(session_id=session_id).model_dump())
    response.headers[SESSION_HEADER] = session_id
    response.set_cookie(
        SESSION_COOKIE, session_id,
        max_age=COOKIE_MAX_AGE,
        httponly=True,
        samesite="strict",
        secure=request.url.scheme == "https",
    )
    return response


@router.get("/check-session", response_model=SessionStatus)
async def check_session(request: Request):
    """Report whether the caller's session (header or cookie) is known."""
    session_id = request.headers.get(SESSION_HEADER) or request.cookies.get(SESSION_COOKIE)
    if not session_id or not is_valid_session_id(session_id):
        return SessionStatus(session_id=session_id)
    progress = request.app.state.registry.get(session_id)
    if progress is None:
        return SessionStatus(session_id=session_id)
    return SessionStatus(session_id=session_id, exists=True, state=progress.state)
