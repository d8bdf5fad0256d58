"""Handlebars prompt templates for the generation stages.

Every stage renders one system prompt (role instructions) and one user prompt
(the material to work on). The campaign setting and writing style supplied
with a request are embedded as fenced blocks via the {{> setting}} and
{{> style}} partials.
"""

from collections.abc import Callable
from typing import Any

import pybars

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Shared blocks ────────────────────────────────────────

SETTING_BLOCK = """
This adventure takes place in an established campaign setting.
For details about the campaign setting, refer to the following details.
Focus on writing the story of the adventure (above) in the provided setting (below).
```
BEGIN SETTING DETAILS
{{{setting}}}
END SETTING DETAILS
```
"""

STYLE_BLOCK = """
```
BEGIN WRITING STYLE DETAILS
{{{style}}}
END WRITING STYLE DETAILS
```
"""

_NO_CONFIRMATION = """Do this without asking for confirmation or direction.
Do not ask for confirmation in any way, just output the complete adventure.
This is essential."""

_REALISM = """Episode should also include a unique side-plot.
Prefer a relatable sense of realism.
Fantasy is acceptable, but avoiding material circumstances is not.
Avoid overt flights of fancy.
Maintain verisimilitude throughout the story."""

_PAGINATION = """If it is necessary due to response length, break the result into one-page (about 80 lines) sections.
Do this until you reach the full 8 pages minimum.
At the top of each page, add [Page Number] of [Total pages].
At the bottom of each page except the final page, add [continued on next page].
On the last page, add [final page].
Never refer to yourself."""

_LICENSE = """The author is anonymous.
No disclaimers or credits are necessary.
Everything is Creative Commons Zero with no attribution."""


# ── Stage 1: outline ─────────────────────────────────────

OUTLINE_SYSTEM = """Create a Role-Playing Game adventure series table of contents based on the following prompt.
For each episode include:
- Title
- Summary (including plot and location)
- Tagline
- Main non-player characters

The main plot should extend from the first episode to the last episode.
Each episode should also include a unique side-plot.
Prefer a relatable sense of realism.
Fantasy is acceptable, but avoiding material circumstances is not.
Avoid overt flights of fancy.
Maintain verisimilitude throughout the story.

Format as structured markdown.
Avoid the direct use of copyrighted material and characters.
Avoid the use of real places.

""" + _NO_CONFIRMATION + """

Follow this example format exactly for each consecutive episode:
```
## Episode: Number - Episode Title
Summary: 8 sentence summary of the adventure, setting, plot, and mood. (All one line)
Tagline: Catchy one-sentence quote about the adventure (All one line)
Location: Location name, 2-3 sentence location description (All one line)
Characters: Character One, Character Two, Character Three... (All one line)

```
{{> setting}}"""

OUTLINE_USER = "This is the story prompt, it is very important that you follow this prompt: {{{request}}}"


# ── Stages 2 and 5: illustration prompts ─────────────────

ILLUSTRATION_SYSTEM = """Generate 2-6 Stable Diffusion prompts for this adventure. Include:
1. At least one map or location layout
2. Key scenes or dramatic moments
3. Important characters or monsters
Avoid text elements in the images.
For each prompt, specify:
- Detailed visual description
- Art style (e.g., dark fantasy, heroic fantasy, etc.)
- Lighting and mood
- Composition details

Follow this example format exactly for each consecutive illustration:
```
## Illustration: Number - Episode Title - Illustration Title
Description: 3-8 sentence description of the scene optimized for Stable Diffusion XL
Style: Stylistic description of the art
Type: Map OR Portrait OR Scene etc...

```
"""

COVER_USER = "Generate cover illustration prompts for this adventure:\n{{{table_of_contents}}}\n"

ILLUSTRATION_USER = "Generate illustration prompts for this adventure:\n{{{full_text}}}\n"


# ── Stage 3: one-page outlines ───────────────────────────

ONE_PAGE_SYSTEM = """Convert this episode summary into a one-page dungeon format (about 80 lines) following these guidelines:
1. Start with a clear location description
2. List key NPCs and their motivations
3. Include a random encounter table (1d6)
4. Add a treasure table (1d6)
5. Describe key locations within the dungeon
6. Include any relevant traps or puzzles
7. Provide monster statistics in abbreviated format
8. Game-system agnostic
Format the response in beautifully structured markdown with symbols and emoji.
""" + _LICENSE + "\n\n" + _NO_CONFIRMATION + "\n\n" + _REALISM + "\n{{> setting}}"

ONE_PAGE_USER = """Expand this episode description into a one-page dungeon format:
{{{episode}}}
{{#if previous}}There was a previous adventure in this series. Here is summary of the previous adventure:
{{{previous}}}
{{/if}}The original prompt provided by a human for this story arc was:
{{{request}}}
"""


# ── Stage 4: full expansion ──────────────────────────────

EXPAND_SYSTEM = """Expand this one-page dungeon into a detailed 8 page adventure (about 600 lines) including:
1. Detailed background and hook
2. Complete location descriptions
3. Full NPC descriptive backgrounds and personalities
4. Detailed encounter descriptions
5. Complete monster statistics with physical and tactical description
6. Multiple possible paths through the adventure
7. Alternative endings
8. Scaling options for different party levels
9. Game-system agnostic
Format the response in beautifully structured markdown with symbols and emoji, with clear sections.
Longer sections should use complete sentences and paragraphs.
""" + _LICENSE + "\n\n" + _REALISM + "\n\n" + _NO_CONFIRMATION + "\n\n" + _PAGINATION + "\n{{> style}}"

EXPAND_USER = """Expand this one-page dungeon into a detailed 8 page (about 600 lines) adventure:
{{{one_page}}}
{{#if previous}}There was a previous adventure in this series. Here is summary of the previous adventure:
{{{previous}}}
{{/if}}"""


# ── Stage 6: content review ──────────────────────────────

REVIEW_SYSTEM = """Review and revise this adventure to remove or replace any copyrighted material and output a complete edited version:
1. Replace specific trademarked monsters with generic alternatives
2. Remove trademarked spells and items
3. Generalize any specific setting references
4. Maintain the adventure's theme and feeling while using original content
5. Ensure mechanical elements are system-agnostic
6. Remove unacceptable tropes such as racism and sexism.
7. Output the complete adventure with revisions, do not provide suggestions.

Even if no revisions need to be made, output the complete original adventure.
""" + _NO_CONFIRMATION + """

If no revision is made, do not report any additional information.
Just output the original adventure.

Provide a complete revised and edited version of the entire adventure.
Preserve the existing response in beautifully formatted markdown with symbols and emoji, with clear sections.
""" + _LICENSE + "\n\n" + _PAGINATION + "\n"

REVIEW_USER = "Remove any copyrighted material from this adventure:\n{{{full_text}}}"


# ── Continuation ─────────────────────────────────────────

CONTINUE_USER = "Please continue from where you left off:\n{{{previous}}}"


_PARTIALS_SRC: dict[str, str] = {
    "setting": SETTING_BLOCK,
    "style": STYLE_BLOCK,
}
_partials: dict[str, Callable] = {}


def _compile(template_str: str) -> Callable:
    compiled = _cache.get(template_str)
    if compiled is None:
        compiled = _compiler.compile(template_str)
        _cache[template_str] = compiled
    return compiled


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        if not _partials:
            for name, src in _PARTIALS_SRC.items():
                _partials[name] = _compile(src)
        return str(_compile(template_str)(context, partials=_partials))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e
