"""WebSocket endpoints. The session id comes from the path or the cookie."""

from fastapi import APIRouter, WebSocket

router = APIRouter()


@router.websocket("/ws/{session_id}")
async def session_socket(websocket: WebSocket, session_id: str):
    await websocket.app.state.channels.serve(websocket, session_id)


@router.websocket("/ws")
async def cookie_socket(websocket: WebSocket):
    await websocket.app.state.channels.serve(websocket, websocket.cookies.get("session_id"))
