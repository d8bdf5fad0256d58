"""Markdown folder rendering and zip archiving of a finished adventure.

Output layout:

    out_dir/
      00_Contents/
        Contents.md         table of contents
        Caption_01.md       one per cover illustration
      01_Episode/
        Episode.md          full text
        OnePage.md          one-page outline
        Caption_01.md       one per illustration
      02_Episode/
        ...
"""

import logging
import zipfile
from pathlib import Path

from dndbot.models import Adventure, Illustration

logger = logging.getLogger(__name__)

PAGE_BREAK_MARKER = "[continued on next page]"


def add_page_breaks(text: str) -> str:
    """Follow every page-continuation marker with a \\newpage directive."""
    return text.replace(PAGE_BREAK_MARKER, PAGE_BREAK_MARKER + "\n\\newpage\n")


def caption(illustration: Illustration) -> str:
    return (
        f"Description: {illustration.description}\n"
        f"Style: {illustration.style}\n"
        f"Is Map: {str(illustration.is_map).lower()}"
    )


def save_to_files(adventure: Adventure, out_dir: Path) -> None:
    """Write the adventure as a folder-per-episode markdown tree."""
    contents = out_dir / "00_Contents"
    contents.mkdir(parents=True, exist_ok=True)
    (contents / "Contents.md").write_text(adventure.table_of_contents)
    for i, cover in enumerate(adventure.covers, start=1):
        (contents / f"Caption_{i:02d}.md").write_text(caption(cover))

    for i, episode in enumerate(adventure.episodes, start=1):
        episode_dir = out_dir / f"{i:02d}_Episode"
        episode_dir.mkdir(parents=True, exist_ok=True)
        if episode.full_text:
            (episode_dir / "Episode.md").write_text(add_page_breaks(episode.full_text))
        if episode.one_page:
            (episode_dir / "OnePage.md").write_text(episode.one_page)
        for j, illustration in enumerate(episode.illustrations, start=1):
            (episode_dir / f"Caption_{j:02d}.md").write_text(caption(illustration))

    logger.info("Rendered %d episodes to %s", len(adventure.episodes), out_dir)


def zip_output_directory(out_dir: Path) -> Path:
    """Bundle `out_dir` into `<out_dir>.zip`, paths relative to its parent."""
    zip_path = out_dir.with_name(out_dir.name + ".zip")
    with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zf:
        for path in sorted(out_dir.rglob("*")):
            if path.is_file():
                zf.write(path, path.relative_to(out_dir.parent))
    logger.info("Archived %s to %s", out_dir, zip_path)
    return zip_path
