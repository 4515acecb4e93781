"""Durable (phase, iteration) checkpoint."""

import logging
from pathlib import Path
from typing import Optional

from agentic_build_loop.loop_state import LoopState, now_ms
from agentic_build_loop.storage import atomic_write_text, remove_if_exists

logger = logging.getLogger(__name__)


class CheckpointStore:
    """Persists the loop's current phase and iteration to a single JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def save(self, state: LoopState) -> None:
        state.updated_at_ms = now_ms()
        atomic_write_text(self.path, state.to_json())

    def load(self) -> Optional[LoopState]:
        """
        Load the last checkpoint.

        Returns:
            LoopState, or None if there is no usable checkpoint. A corrupt
            or unreadable record is treated the same as a missing one.
        """
        if not self.path.exists():
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Checkpoint unreadable, starting fresh: %s", e)
            return None

        state = LoopState.from_json(text)
        if state is None:
            logger.warning("Checkpoint at %s is corrupt, starting fresh", self.path)
        return state

    def clear(self) -> None:
        if remove_if_exists(self.path):
            logger.info("Checkpoint cleared")
