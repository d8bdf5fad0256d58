"""Pipeline runner — executes the stages in order for one request.

Run flow:
  1. Build the initial Adventure from the request, setting and style.
  2. For each stage in STAGES:
       a. Stop with GenerationTimeout if the deadline has passed.
       b. Report the stage's start message.
       c. Hand the adventure to the stage and take back the new one.
       d. Persist the checkpoint, report the stage's done message.
  3. Return the finished Adventure.

A failing stage stops the run at once: the cause is wrapped in StageError
(which names the stage) and no later stage is started. Retrying is the
client's business, never the pipeline's.
"""

from __future__ import annotations

import logging
import time

from dndbot.continuation import ContinuationError
from dndbot.llm import GenerationClient, GenerationError
from dndbot.models import Adventure
from dndbot.progress import NullReporter, Reporter
from dndbot.prompts import PromptError
from dndbot.storage import Storage

from .stages import STAGES, Stage, StageContext

logger = logging.getLogger(__name__)


class GenerationTimeout(Exception):
    """The overall generation deadline passed between two stages."""


class StageError(Exception):
    """A pipeline stage failed. The original error is chained as __cause__."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"failed during {stage}: {cause}")
        self.stage = stage
        self.cause = cause


STAGE_FAILURES = (GenerationError, ContinuationError, PromptError, OSError)


class Pipeline:
    """Runs STAGES against one generation client and checkpoint store.

    Args:
        client:            Generation client used by every stage.
        storage:           Checkpoint store; the adventure is saved after every
                           stage and continuation round.
        max_continuations: Cap handed to every continuation loop.
        timeout:           Default overall time budget in seconds.
        stages:            Stage list, STAGES unless overridden.
    """

    def __init__(
        self,
        client: GenerationClient,
        storage: Storage,
        max_continuations: int | None = 20,
        timeout: float = 15 * 60,
        stages: list[Stage] | None = None,
    ) -> None:
        self.client = client
        self.storage = storage
        self.max_continuations = max_continuations
        self.timeout = timeout
        self.stages = stages if stages is not None else STAGES

    async def run(
        self,
        session_id: str,
        request: str,
        *,
        setting: str = "",
        style: str = "",
        reporter: Reporter | None = None,
        deadline: float | None = None,
    ) -> Adventure:
        """Generate a complete adventure for `request`.

        `deadline` is an absolute time.monotonic() value; it defaults to now
        plus the pipeline timeout.
        """
        reporter = reporter or NullReporter()
        if deadline is None:
            deadline = time.monotonic() + self.timeout

        async def checkpoint(adv: Adventure) -> None:
            self.storage.save_adventure(session_id, adv)

        ctx = StageContext(
            client=self.client,
            session_id=session_id,
            reporter=reporter,
            checkpoint=checkpoint,
            max_continuations=self.max_continuations,
        )
        adventure = Adventure(request=request, setting=setting, style=style)

        for stage in self.stages:
            if time.monotonic() >= deadline:
                logger.warning("[Session %s] Generation timed out before: %s",
                               session_id, stage.name)
                raise StageError(stage.name, GenerationTimeout(f"generation timed out during {stage.name}"))

            logger.info("[Session %s] Stage: %s", session_id, stage.name)
            await reporter.report(stage.start_message)
            try:
                adventure = await stage.run(adventure, ctx)
                self.storage.save_adventure(session_id, adventure)
            except STAGE_FAILURES as e:
                logger.error("[Session %s] Error during %s: %s", session_id, stage.name, e)
                raise StageError(stage.name, e) from e
            await reporter.report(stage.done_message)

        return adventure
