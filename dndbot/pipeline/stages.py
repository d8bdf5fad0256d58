"""The six generation stages.

Each stage takes ownership of the Adventure it is handed: it works on a deep
copy and returns that copy, so the aggregate the previous stage produced is
never written again. Per-episode work runs sequentially, in episode order.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from dndbot import prompts
from dndbot.continuation import expand
from dndbot.llm import GenerationClient
from dndbot.models import Adventure
from dndbot.parsing import parse_episodes, parse_illustrations
from dndbot.progress import NullReporter, Reporter

logger = logging.getLogger(__name__)


async def _no_checkpoint(adventure: Adventure) -> None:
    return None


@dataclass
class StageContext:
    """Everything a stage may use besides the adventure itself."""

    client: GenerationClient
    session_id: str = ""
    reporter: Reporter = field(default_factory=NullReporter)
    checkpoint: Callable[[Adventure], Awaitable[None]] = _no_checkpoint
    max_continuations: int | None = 20


StageFunc = Callable[[Adventure, StageContext], Awaitable[Adventure]]


@dataclass(frozen=True)
class Stage:
    name: str
    start_message: str
    done_message: str
    run: StageFunc


def _setting_ctx(adventure: Adventure) -> dict:
    return {"setting": adventure.setting, "style": adventure.style}


# ---------------------------------------------------------------------------
# 1. Outline
# ---------------------------------------------------------------------------

async def generate_outline(adventure: Adventure, ctx: StageContext) -> Adventure:
    adventure = adventure.model_copy(deep=True)
    system = prompts.render_prompt(prompts.OUTLINE_SYSTEM, _setting_ctx(adventure))
    user = prompts.render_prompt(prompts.OUTLINE_USER, {"request": adventure.request})

    response = await ctx.client.send(system, user)
    adventure.table_of_contents = response
    adventure.episodes = parse_episodes(response)
    await ctx.reporter.report(
        f"📜 Outlined {len(adventure.episodes)} episodes", output=response
    )
    if not adventure.episodes:
        logger.warning("[Session %s] Outline produced no parseable episodes", ctx.session_id)
        await ctx.reporter.report("⚠️ No episodes could be read from the outline")
    return adventure


# ---------------------------------------------------------------------------
# 2. Cover prompts
# ---------------------------------------------------------------------------

async def generate_cover_prompts(adventure: Adventure, ctx: StageContext) -> Adventure:
    adventure = adventure.model_copy(deep=True)
    user = prompts.render_prompt(
        prompts.COVER_USER, {"table_of_contents": adventure.table_of_contents}
    )
    response = await ctx.client.send(prompts.ILLUSTRATION_SYSTEM, user)
    adventure.covers = parse_illustrations(response)
    if not adventure.covers:
        logger.warning("[Session %s] No cover prompts could be parsed", ctx.session_id)
        await ctx.reporter.report("⚠️ No cover prompts could be read")
    return adventure


# ---------------------------------------------------------------------------
# 3. One-page outlines
# ---------------------------------------------------------------------------

async def generate_one_pages(adventure: Adventure, ctx: StageContext) -> Adventure:
    adventure = adventure.model_copy(deep=True)
    system = prompts.render_prompt(prompts.ONE_PAGE_SYSTEM, _setting_ctx(adventure))

    for i, episode in enumerate(adventure.episodes):
        await ctx.reporter.report(f"🗺️ Designing: {episode.title}")
        user = prompts.render_prompt(prompts.ONE_PAGE_USER, {
            "episode": episode.text(),
            "previous": adventure.episodes[i - 1].text() if i > 0 else "",
            "request": adventure.request,
        })
        episode.one_page = await ctx.client.send(system, user)
        await ctx.checkpoint(adventure)
    return adventure


# ---------------------------------------------------------------------------
# 4. Full expansion
# ---------------------------------------------------------------------------

async def expand_episodes(adventure: Adventure, ctx: StageContext) -> Adventure:
    adventure = adventure.model_copy(deep=True)
    system = prompts.render_prompt(prompts.EXPAND_SYSTEM, _setting_ctx(adventure))

    for i, episode in enumerate(adventure.episodes):
        await ctx.reporter.report(f"Working on: {episode.title}")
        prompt = prompts.render_prompt(prompts.EXPAND_USER, {
            "one_page": episode.one_page,
            "previous": adventure.episodes[i - 1].text() if i > 0 else "",
        })
        episode.full_text = ""

        async def on_round(index: int, title: str = episode.title) -> None:
            await ctx.reporter.report(f"Working on: {title} section {index}")

        async def checkpoint(text: str, ep=episode) -> None:
            ep.full_text = text
            await ctx.checkpoint(adventure)

        episode.full_text = await expand(
            ctx.client, prompt, system,
            checkpoint=checkpoint,
            on_round=on_round,
            max_rounds=ctx.max_continuations,
        )
    return adventure


# ---------------------------------------------------------------------------
# 5. Illustration prompts
# ---------------------------------------------------------------------------

async def generate_illustration_prompts(adventure: Adventure, ctx: StageContext) -> Adventure:
    adventure = adventure.model_copy(deep=True)
    for episode in adventure.episodes:
        user = prompts.render_prompt(prompts.ILLUSTRATION_USER, {"full_text": episode.full_text})
        response = await ctx.client.send(prompts.ILLUSTRATION_SYSTEM, user)
        episode.illustrations = parse_illustrations(response)
        if not episode.illustrations:
            logger.warning("[Session %s] No illustration prompts parsed for %r",
                           ctx.session_id, episode.title)
            await ctx.reporter.report(f"⚠️ No illustration prompts could be read for {episode.title}")
        await ctx.checkpoint(adventure)
    return adventure


# ---------------------------------------------------------------------------
# 6. Content review
# ---------------------------------------------------------------------------

async def review_content(adventure: Adventure, ctx: StageContext) -> Adventure:
    adventure = adventure.model_copy(deep=True)
    for episode in adventure.episodes:
        await ctx.reporter.report(f"⚖️ Reviewing: {episode.title}")
        prompt = prompts.render_prompt(prompts.REVIEW_USER, {"full_text": episode.full_text})
        # The review replaces the text wholesale; the draft stays in place
        # until the rewrite is complete.
        episode.full_text = await expand(
            ctx.client, prompt, prompts.REVIEW_SYSTEM,
            max_rounds=ctx.max_continuations,
        )
        await ctx.checkpoint(adventure)
    return adventure


STAGES: list[Stage] = [
    Stage("Generating table of contents", "🎲 Generating table of contents...",
          "Table of contents ready", generate_outline),
    Stage("Creating cover pages", "🎨 Creating cover pages...",
          "Cover prompts ready", generate_cover_prompts),
    Stage("Designing dungeons", "🗺️ Designing dungeon layouts...",
          "Dungeon layouts ready", generate_one_pages),
    Stage("Expanding adventure content", "📚 Expanding adventure content...",
          "Adventure content expanded", expand_episodes),
    Stage("Creating illustrations", "🖼️ Creating illustration prompts...",
          "Illustration prompts ready", generate_illustration_prompts),
    Stage("Reviewing content", "⚖️ Reviewing and adjusting content...",
          "Content review finished", review_content),
]
