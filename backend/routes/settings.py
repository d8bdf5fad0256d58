"""Health check and public configuration endpoints."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(request: Request):
    """Non-secret generation settings, for display in the UI."""
    settings = request.app.state.settings
    return {
        "provider_format": settings.provider_format,
        "model": settings.model,
        "max_continuations": settings.max_continuations,
        "generation_timeout": settings.generation_timeout,
        "rate_limit": settings.rate_limit,
        "rate_window": settings.rate_window,
    }
