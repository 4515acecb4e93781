"""Fingerprints of failure reports, used to tell new failures from repeats."""

import hashlib
import logging
from pathlib import Path
from typing import Optional

from agentic_build_loop.loop_state import ErrorFingerprint
from agentic_build_loop.storage import atomic_write_text, remove_if_exists

logger = logging.getLogger(__name__)


def fingerprint_bytes(data: bytes, observed_at_ms: int, iteration: int = 0) -> ErrorFingerprint:
    """Fingerprint raw report bytes."""
    return ErrorFingerprint(
        observed_at_ms=observed_at_ms,
        content_hash=hashlib.sha256(data).hexdigest(),
        iteration=iteration,
    )


class FingerprintStore:
    """
    Stores the fingerprint of the last failure the loop acted on.

    The record lives next to the failure artifacts but is never removed
    when a build is triggered; only an explicit full reset clears it.
    """

    def __init__(self, path: Path, summary_report: Path):
        self.path = Path(path)
        self.summary_report = Path(summary_report)

    def compute(self, iteration: int = 0) -> ErrorFingerprint:
        """
        Fingerprint the summary report as it is on disk now.

        A missing report fingerprints as empty content observed at time 0.
        """
        try:
            data = self.summary_report.read_bytes()
            observed_at_ms = self.summary_report.stat().st_mtime_ns // 1_000_000
        except FileNotFoundError:
            data = b""
            observed_at_ms = 0
        return fingerprint_bytes(data, observed_at_ms, iteration)

    def load(self) -> Optional[ErrorFingerprint]:
        if not self.path.exists():
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Fingerprint unreadable, treating as absent: %s", e)
            return None
        fp = ErrorFingerprint.from_json(text)
        if fp is None:
            logger.warning("Fingerprint at %s is corrupt, treating as absent", self.path)
        return fp

    def save(self, fp: ErrorFingerprint) -> None:
        atomic_write_text(self.path, fp.to_json())
        logger.debug("Saved fingerprint %s (iteration %d)", fp.content_hash[:12], fp.iteration)

    def clear(self) -> None:
        if remove_if_exists(self.path):
            logger.info("Fingerprint cleared")

    def is_new_failure(self) -> bool:
        """
        Compare the current failure report with the stored fingerprint.

        Read-only: nothing is recorded, so asking again after a crash gives
        the same answer. Returns True on the first failure ever observed,
        when the report's modification time or content hash changed, or
        when the report is missing (it cannot be proven stale).
        """
        if not self.summary_report.exists():
            logger.warning("Failure summary missing at %s", self.summary_report)
            return True
        return not self.compute().same_failure(self.load())

    def has_new_failure(self, iteration: int = 0) -> bool:
        """
        Compare, then record the observed fingerprint when it is new.

        Asking twice without a change answers False the second time. A
        missing report answers True without recording anything.
        """
        if not self.is_new_failure():
            return False
        if self.summary_report.exists():
            self.save(self.compute(iteration))
        return True
