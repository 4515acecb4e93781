"""On-disk layout and atomic file writes for loop state."""

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from agentic_build_loop.constants import (
    CHECKPOINT_FILE,
    COMPLETION_FLAG_FILE,
    ERROR_FILES_FILE,
    ERROR_LOGS_DIR,
    ERROR_SUMMARY_FILE,
    FINGERPRINT_FILE,
    OUTPUT_FILE,
    REPORTS_DIR,
)
from agentic_build_loop.loop_state import ErrorBundle

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* atomically.

    Writes to a temporary file in the same directory, then renames
    (``os.replace``) into place so a reader never sees a partial file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def remove_if_exists(path: Path) -> bool:
    """Delete a file, returning True if something was removed."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False


@dataclass
class StateLayout:
    """Well-known paths under the loop's base directory."""

    base_dir: Path

    def __post_init__(self):
        self.base_dir = Path(self.base_dir).expanduser()

    @property
    def output_file(self) -> Path:
        return self.base_dir / OUTPUT_FILE

    @property
    def checkpoint_file(self) -> Path:
        return self.base_dir / CHECKPOINT_FILE

    @property
    def fingerprint_file(self) -> Path:
        return self.base_dir / FINGERPRINT_FILE

    @property
    def completion_flag(self) -> Path:
        return self.base_dir / COMPLETION_FLAG_FILE

    @property
    def error_logs_dir(self) -> Path:
        return self.base_dir / ERROR_LOGS_DIR

    @property
    def summary_report(self) -> Path:
        return self.error_logs_dir / ERROR_SUMMARY_FILE

    @property
    def files_report(self) -> Path:
        return self.error_logs_dir / ERROR_FILES_FILE

    @property
    def reports_dir(self) -> Path:
        return self.base_dir / REPORTS_DIR

    def ensure_dirs(self) -> list[Path]:
        """Create the base, error-log and report directories."""
        created = []
        for directory in (self.base_dir, self.error_logs_dir, self.reports_dir):
            if not directory.exists():
                created.append(directory)
            directory.mkdir(parents=True, exist_ok=True)
        return created

    def read_error_bundle(self) -> Optional[ErrorBundle]:
        """Load both failure artifacts, or None if either is missing."""
        if not self.summary_report.exists() or not self.files_report.exists():
            return None
        try:
            raw_summary = self.summary_report.read_bytes()
            modified_ms = self.summary_report.stat().st_mtime_ns // 1_000_000
            files_report = self.files_report.read_text(encoding="utf-8", errors="replace")
            return ErrorBundle(
                files_report=files_report,
                summary_report=raw_summary.decode("utf-8", errors="replace"),
                summary_modified_ms=modified_ms,
                raw_summary=raw_summary,
            )
        except FileNotFoundError:
            # Replaced between the existence check and the read
            return None

    def clear_failure_artifacts(self) -> None:
        """Remove failure artifacts. The fingerprint record is left alone."""
        for path in (self.summary_report, self.files_report):
            if remove_if_exists(path):
                logger.debug("Removed %s", path)

    def clear_completion_flag(self) -> None:
        remove_if_exists(self.completion_flag)
