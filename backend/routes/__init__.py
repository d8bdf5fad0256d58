"""HTTP and WebSocket endpoints.

`router` is mounted under /api: health, settings, message history.
`page_router` is mounted at the root: POST /generate, GET /check-session and
the /ws WebSocket endpoints the browser client talks to.
"""

from fastapi import APIRouter

from .generate import router as generate_router
from .messages import router as messages_router
from .settings import router as settings_router
from .socket import router as socket_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(messages_router)

page_router = APIRouter()
page_router.include_router(generate_router)
page_router.include_router(socket_router)
