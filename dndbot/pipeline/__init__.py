"""Adventure generation pipeline.

Executes the full run for one request:
  1. Outline — table of contents, parsed into episodes.
  2. Cover prompts — illustration descriptors for the front matter.
  3. One-page outlines — one per episode, with the previous episode as context.
  4. Full expansion — continuation loop per episode, seeded with its outline.
  5. Illustration prompts — descriptors per episode.
  6. Content review — continuation loop per episode rewriting the full text.

Outline output format (parsed by parse_episodes):
  ## Episode: 1 - Title
  Summary: / Tagline: / Location: / Characters: A, B, C

Illustration output format (parsed by parse_illustrations):
  ## Illustration: 1 - Episode - Title
  Description: / Style: / Type: Map|Scene|...
"""

from .core import (  # noqa: F401
    STAGE_FAILURES,
    GenerationTimeout,
    Pipeline,
    StageError,
)
from .stages import (  # noqa: F401
    STAGES,
    Stage,
    StageContext,
    expand_episodes,
    generate_cover_prompts,
    generate_illustration_prompts,
    generate_one_pages,
    generate_outline,
    review_content,
)
