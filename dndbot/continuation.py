"""Continuation loop: drive one logical generation to completion.

Long answers come back split across several responses. As long as a response
mentions the continuation marker (the prompts ask the model to end each page
but the last with "[continued on next page]"), the loop asks for more and
joins the pieces with a blank line.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable

from dndbot.llm import GenerationClient, GenerationError
from dndbot.prompts import CONTINUE_USER, render_prompt

logger = logging.getLogger(__name__)

CONTINUATION_MARKER = "continue"

Checkpoint = Callable[[str], "Awaitable[None] | None"]
RoundHook = Callable[[int], "Awaitable[None] | None"]


class ContinuationError(Exception):
    """A generation call failed part-way through a continuation loop.

    `partial` holds everything accumulated (and checkpointed) before the
    failure; the underlying GenerationError is chained as __cause__.
    """

    def __init__(self, message: str, partial: str, rounds: int) -> None:
        super().__init__(message)
        self.partial = partial
        self.rounds = rounds


async def _maybe_await(result: "Awaitable[None] | None") -> None:
    if inspect.isawaitable(result):
        await result


async def expand(
    client: GenerationClient,
    prompt: str,
    instructions: str,
    *,
    checkpoint: Checkpoint | None = None,
    on_round: RoundHook | None = None,
    marker: str = CONTINUATION_MARKER,
    max_rounds: int | None = 20,
) -> str:
    """Call the client until a response no longer asks to be continued.

    Returns the concatenation of all responses joined by blank lines.
    `checkpoint` receives the accumulated text after every response;
    `on_round` is called with the round index before every call.
    """
    accumulated = ""
    current = prompt
    rounds = 0

    while True:
        if max_rounds is not None and rounds >= max_rounds:
            logger.warning("Continuation cap of %d rounds reached, stopping", max_rounds)
            break

        if on_round:
            await _maybe_await(on_round(rounds))
        try:
            response = await client.send(instructions, current)
        except GenerationError as e:
            raise ContinuationError(
                f"Generation failed in round {rounds}: {e}", accumulated, rounds
            ) from e
        rounds += 1

        if accumulated:
            accumulated += "\n\n"
        accumulated += response
        if checkpoint:
            await _maybe_await(checkpoint(accumulated))

        if marker not in response.lower():
            break
        current = render_prompt(CONTINUE_USER, {"previous": response})

    return accumulated
