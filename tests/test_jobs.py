"""Tests for the background generation job and JobRunner."""

import asyncio
import uuid

import pytest

from backend.jobs import JobRunner, run_generation
from dndbot.llm import EchoClient, TransportError
from dndbot.models import GenerationState
from dndbot.pipeline import Pipeline, StageError
from dndbot.progress import GenerationProgress

OUTLINE = """## Episode: 1 - The Drowned Village
Summary: A flooded hamlet.
Characters: A, B

## Episode: 2 - The Temple Beneath
Summary: A temple under the lake.
Characters: C
"""


@pytest.fixture
def progress() -> GenerationProgress:
    return GenerationProgress(str(uuid.uuid4()))


async def test_completed_run_writes_archive(storage, tmp_path, progress):
    pipeline = Pipeline(EchoClient(), storage)
    archive = await run_generation(progress, pipeline, "a haunted mill", tmp_path / "outputs")

    assert archive == tmp_path / "outputs" / f"{progress.session_id}.zip"
    assert archive.is_file()
    assert progress.state == GenerationState.COMPLETED
    assert progress.done.is_set()
    last = progress.history.messages()[-1]
    assert last.status == "completed"
    assert f"/outputs/{progress.session_id}.zip" in last.message
    assert progress.output == f"/outputs/{progress.session_id}.zip"


async def test_stage_failure_short_circuits(scripted, storage, tmp_path, progress):
    client = scripted([OUTLINE, "covers", "one page", TransportError("connection lost")])
    result = await run_generation(progress, Pipeline(client, storage), "r", tmp_path / "outputs")

    assert result is None
    assert client.call_count == 4
    assert progress.state == GenerationState.ERROR
    assert isinstance(progress.error, StageError)
    last = progress.history.messages()[-1]
    assert last.status == "error"
    assert last.message.startswith("❌ Error during Designing dungeons")
    messages = [m.message for m in progress.history.messages()]
    assert "📚 Expanding adventure content..." not in messages
    assert not (tmp_path / "outputs" / progress.session_id).exists()


async def test_unexpected_error_is_contained(tmp_path, progress):
    class BrokenPipeline:
        async def run(self, *args, **kwargs):
            raise ValueError("bad data")

    result = await run_generation(progress, BrokenPipeline(), "r", tmp_path / "outputs")

    assert result is None
    assert progress.state == GenerationState.ERROR
    assert progress.history.messages()[-1].message == "❌ Unexpected error: bad data"


async def test_cancelled_run_ends_in_error(tmp_path, progress):
    class SlowPipeline:
        async def run(self, *args, **kwargs):
            await asyncio.sleep(3600)

    runner = JobRunner()
    runner.start(run_generation(progress, SlowPipeline(), "r", tmp_path / "outputs"))
    await asyncio.sleep(0)
    await runner.shutdown()

    assert progress.state == GenerationState.ERROR
    assert progress.done.is_set()
    assert len(runner) == 0


async def test_job_runner_tracks_tasks():
    runner = JobRunner()
    gate = asyncio.Event()
    task = runner.start(gate.wait(), name="waiter")
    assert len(runner) == 1
    gate.set()
    await task
    await asyncio.sleep(0)
    assert len(runner) == 0
