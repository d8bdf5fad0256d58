"""Message history endpoint for clients that poll instead of listening."""

import html

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse

from dndbot.models import StatusMessage
from dndbot.registry import is_valid_session_id

router = APIRouter()


def _render_html(messages: list[StatusMessage]) -> str:
    parts = []
    for msg in messages:
        fragment = (
            f'<div class="message status-{html.escape(msg.status)}">'
            f'<span class="timestamp">{msg.timestamp.strftime("%H:%M:%S")}</span> '
            f"{html.escape(msg.message)}"
        )
        if msg.output:
            fragment += f"<pre>{html.escape(msg.output)}</pre>"
        parts.append(fragment + "</div>")
    return "\n".join(parts)


@router.get("/messages/{session_id}")
async def get_messages(session_id: str, request: Request, format: str = "json"):
    """Message history of a session, as JSON or as escaped HTML fragments."""
    if not is_valid_session_id(session_id):
        raise HTTPException(400, "Invalid session ID")
    messages = request.app.state.registry.history(session_id)
    if messages is None:
        raise HTTPException(404, "Session not found")
    if format == "html":
        return HTMLResponse(_render_html(messages))
    return [msg.model_dump(mode="json") for msg in messages]
