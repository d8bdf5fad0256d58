"""JSON file storage for adventure checkpoints.

The pipeline writes the whole Adventure aggregate after every stage (and
after every continuation round) so an interrupted generation can be
inspected or picked up again. There is no database — reads and writes go
through plain helper methods that load and dump JSON.

Directory layout:

    {base}/
      adventures/
        {session_id}.json     ← latest Adventure checkpoint
      session_history.json    ← message histories (written by SessionRegistry)
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from dndbot.models import Adventure

logger = logging.getLogger(__name__)


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._adv_root = base_path / "adventures"
        self._adv_root.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    @property
    def history_file(self) -> Path:
        return self._base / "session_history.json"

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _adv_file(self, session_id: str) -> Path:
        return self._adv_root / f"{session_id}.json"

    def _write_text(self, path: Path, text: str) -> None:
        # temp file + rename: readers never see a partial checkpoint
        fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        with os.fdopen(fd, "w") as f:
            f.write(text)
        os.replace(tmp, path)

    # ------------------------------------------------------------------
    # Adventures
    # ------------------------------------------------------------------

    def save_adventure(self, session_id: str, adventure: Adventure) -> None:
        self._write_text(self._adv_file(session_id), adventure.model_dump_json(indent=2))
        logger.debug("[Session %s] Checkpoint saved (%d episodes)",
                     session_id, len(adventure.episodes))

    def get_adventure(self, session_id: str) -> Adventure | None:
        path = self._adv_file(session_id)
        if not path.exists():
            return None
        return Adventure.model_validate_json(path.read_text())

    def list_adventures(self) -> list[str]:
        """Session ids with a saved checkpoint, sorted."""
        return sorted(p.stem for p in self._adv_root.glob("*.json"))
