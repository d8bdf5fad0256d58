"""Background generation jobs.

run_generation() is the task boundary for one session: every failure of the
run ends here and becomes the session's `error` state with a final message
naming what went wrong. Nothing escapes the task.

JobRunner keeps references to the running tasks so they are not garbage
collected mid-run, and cancels whatever is left on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from pathlib import Path

from dndbot.models import GenerationState
from dndbot.pipeline import Pipeline, StageError
from dndbot.progress import GenerationProgress
from dndbot.render import save_to_files, zip_output_directory

logger = logging.getLogger(__name__)


async def run_generation(
    progress: GenerationProgress,
    pipeline: Pipeline,
    request: str,
    output_dir: Path,
    setting: str = "",
    style: str = "",
) -> Path | None:
    """Generate, render and archive one adventure. Returns the zip path."""
    session_id = progress.session_id
    try:
        await progress.update_state(GenerationState.GENERATING)
        adventure = await pipeline.run(
            session_id, request, setting=setting, style=style, reporter=progress,
        )

        await progress.report("💾 Saving adventure files...")
        out_dir = output_dir / session_id
        save_to_files(adventure, out_dir)

        await progress.report("📦 Generating zip file...")
        archive = zip_output_directory(out_dir)
        link = f"/outputs/{archive.name}"
        await progress.report("📦 Adventure archive ready", output=link)

        await progress.update_state(
            GenerationState.COMPLETED,
            message=f"✨ Adventure generation completed! Download: {link}",
        )
        logger.info("[Session %s] Generation completed: %s", session_id, archive)
        return archive
    except StageError as e:
        logger.error("[Session %s] Generation failed during %s: %s", session_id, e.stage, e.cause)
        await progress.update_state(
            GenerationState.ERROR, message=f"❌ Error during {e.stage}: {e.cause}", error=e,
        )
    except asyncio.CancelledError as e:
        logger.warning("[Session %s] Generation cancelled", session_id)
        await progress.update_state(
            GenerationState.ERROR, message="❌ Generation was cancelled", error=e,
        )
        raise
    except Exception as e:
        logger.exception("[Session %s] Unexpected generation failure", session_id)
        await progress.update_state(
            GenerationState.ERROR, message=f"❌ Unexpected error: {e}", error=e,
        )
    return None


class JobRunner:
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def start(self, coro: Coroutine, name: str | None = None) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def shutdown(self) -> None:
        """Cancel the running jobs and wait for them to finish."""
        tasks = list(self._tasks)
        if not tasks:
            return
        logger.info("Cancelling %d running generation jobs", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
