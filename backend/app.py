from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles

from backend.channel import ChannelManager
from backend.jobs import JobRunner
from backend.ratelimit import RateLimiter
from backend.routes import page_router, router
from dndbot.config import Settings, load_settings
from dndbot.llm import GenerationClient
from dndbot.pipeline import Pipeline
from dndbot.registry import SessionRegistry
from dndbot.storage import Storage

STATIC_DIR = Path(__file__).parent / "static"


def create_app(settings: Settings | None = None, client: GenerationClient | None = None) -> FastAPI:
    settings = settings or load_settings()
    settings.output_dir.mkdir(parents=True, exist_ok=True)

    storage = Storage(settings.data_dir)
    registry = SessionRegistry(
        storage.history_file,
        cache_ttl=settings.session_cache_ttl,
        stale_after=settings.session_stale_after,
        linger=settings.session_linger,
        reap_interval=settings.reap_interval,
        persist_interval=settings.persist_interval,
        send_timeout=settings.send_timeout,
    )
    registry.load()
    pipeline = Pipeline(
        client or settings.make_client(),
        storage,
        max_continuations=settings.max_continuations,
        timeout=settings.generation_timeout,
    )
    jobs = JobRunner()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        registry.start()
        try:
            yield
        finally:
            await jobs.shutdown()
            await registry.stop()

    app = FastAPI(title="DnDBot", lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = storage
    app.state.registry = registry
    app.state.pipeline = pipeline
    app.state.jobs = jobs
    app.state.channels = ChannelManager(
        registry, settings.ping_interval, idle_timeout=settings.idle_timeout,
    )
    app.state.rate_limiter = RateLimiter(settings.rate_limit, settings.rate_window)

    app.include_router(router, prefix="/api")
    app.include_router(page_router)
    app.mount("/outputs", StaticFiles(directory=settings.output_dir), name="outputs")

    if STATIC_DIR.exists():
        @app.get("/", include_in_schema=False)
        async def index():
            return FileResponse(STATIC_DIR / "index.html")

    return app
