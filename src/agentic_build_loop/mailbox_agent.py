"""File-handoff response agent.

The AI side of the loop writes its answer to ``inbox/response.md`` (and,
for downloaded-file mode, files into ``downloads/``). Prompts going back
are written as JSON to ``outbox/prompt-<n>.json``. A response counts as
complete once the file has stopped changing for the stability window and
no in-progress marker or streaming indicator is present.
"""

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from agentic_build_loop.collaborators import ResponseAgent
from agentic_build_loop.constants import STABILITY_POLL_SECONDS, STABILITY_WINDOW_SECONDS
from agentic_build_loop.extraction import extract
from agentic_build_loop.loop_state import ExtractionMode, now_ms
from agentic_build_loop.storage import StateLayout, atomic_write_text
from agentic_build_loop.waiting import wait_until

logger = logging.getLogger(__name__)

RESPONSE_FILE = "response.md"
IN_PROGRESS_MARKER = ".in_progress"
STREAMING_INDICATORS = ("●", "Thinking…", "Thinking...", "▌")


class MailboxResponseAgent(ResponseAgent):
    """Response agent that exchanges responses and prompts through a directory."""

    def __init__(
        self,
        layout: StateLayout,
        mailbox_dir: Optional[Path] = None,
        stability_window: float = STABILITY_WINDOW_SECONDS,
        poll_interval: float = STABILITY_POLL_SECONDS,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        self.layout = layout
        self.mailbox_dir = Path(mailbox_dir) if mailbox_dir else layout.base_dir / "mailbox"
        self.stability_window = stability_window
        self.poll_interval = poll_interval
        self.stop_event = stop_event
        self._clock = clock
        self._sleep = sleep

        self._prompt_text: Optional[str] = None
        self._attachments: list[Path] = []
        self._last_signature = None
        self._last_change = 0.0
        # Downloads newer than this belong to the current response
        self.downloads_since_ms = now_ms()

    @property
    def inbox(self) -> Path:
        return self.mailbox_dir / "inbox"

    @property
    def outbox(self) -> Path:
        return self.mailbox_dir / "outbox"

    @property
    def downloads_dir(self) -> Path:
        return self.mailbox_dir / "downloads"

    @property
    def response_file(self) -> Path:
        return self.inbox / RESPONSE_FILE

    def ensure_dirs(self) -> None:
        for directory in (self.inbox, self.outbox, self.downloads_dir):
            directory.mkdir(parents=True, exist_ok=True)

    # --- Response detection ---

    def _signature(self):
        try:
            stat = self.response_file.stat()
        except FileNotFoundError:
            return None
        return (stat.st_size, stat.st_mtime_ns)

    def _is_streaming(self) -> bool:
        if (self.inbox / IN_PROGRESS_MARKER).exists():
            return True
        try:
            tail = self.response_file.read_text(encoding="utf-8", errors="replace").rstrip()[-32:]
        except FileNotFoundError:
            return False
        return any(tail.endswith(indicator) for indicator in STREAMING_INDICATORS)

    def _response_settled(self) -> bool:
        now = self._clock()
        signature = self._signature()
        if signature != self._last_signature:
            self._last_signature = signature
            self._last_change = now
        if signature is None or signature[0] == 0:
            return False
        if now - self._last_change < self.stability_window:
            return False
        return not self._is_streaming()

    def wait_for_stability(self, timeout: float) -> bool:
        self._last_signature = None
        started = self._last_change = self._clock()
        settled = wait_until(
            self._response_settled,
            timeout=timeout,
            interval=self.poll_interval,
            stop_event=self.stop_event,
            clock=self._clock,
            sleep=self._sleep,
        )
        if settled:
            logger.debug("Response stable for %.1fs, complete", self.stability_window)
        else:
            logger.warning(
                "wait_for_stability ended unsettled after %.1fs (timeout %.0fs)",
                self._clock() - started, timeout,
            )
        return settled

    # --- Output ---

    def materialize_output(self, mode: ExtractionMode) -> bool:
        try:
            response_text = self.response_file.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            response_text = ""

        content = extract(
            mode,
            response_text,
            downloads_dir=self.downloads_dir,
            since_ms=self.downloads_since_ms,
        )
        if content is None:
            logger.warning("Nothing to extract (mode=%s)", mode.value)
            return False

        atomic_write_text(self.layout.output_file, content)
        logger.info("Wrote %s (%d chars)", self.layout.output_file, len(content))
        return True

    # --- Prompting ---

    def fill_prompt(self, text: str) -> bool:
        self._prompt_text = text
        return True

    def attach_file(self, name: str) -> bool:
        path = self.layout.error_logs_dir / name
        if not path.is_file():
            logger.warning("Attachment not found: %s", path)
            return False
        if path not in self._attachments:
            self._attachments.append(path)
        return True

    def discard_draft(self) -> None:
        if self._prompt_text or self._attachments:
            logger.info("Discarding unsent prompt draft (%d attachment(s))", len(self._attachments))
        self._prompt_text = None
        self._attachments = []

    def _next_prompt_path(self) -> Path:
        existing = list(self.outbox.glob("prompt-*.json"))
        return self.outbox / f"prompt-{len(existing) + 1:04d}.json"

    def submit(self) -> bool:
        if not self._prompt_text:
            logger.warning("Submit requested with no prompt filled")
            return False

        attachments = [
            {"name": p.name, "content": p.read_text(encoding="utf-8", errors="replace")}
            for p in self._attachments
            if p.is_file()
        ]
        submitted_at = now_ms()
        prompt = {
            "text": self._prompt_text,
            "attachments": attachments,
            "submittedAtMs": submitted_at,
        }

        self.outbox.mkdir(parents=True, exist_ok=True)
        prompt_path = self._next_prompt_path()
        atomic_write_text(prompt_path, json.dumps(prompt, indent=2))
        self._archive_response(submitted_at)

        logger.info("Prompt submitted: %s (%d attachment(s))", prompt_path.name, len(attachments))
        self._prompt_text = None
        self._attachments = []
        self.downloads_since_ms = submitted_at
        return True

    def _archive_response(self, stamp: int) -> None:
        """Move the answered response out of the inbox so the next wait sees a new one."""
        if not self.response_file.exists():
            return
        archive_dir = self.inbox / "archive"
        archive_dir.mkdir(parents=True, exist_ok=True)
        os.replace(self.response_file, archive_dir / f"response-{stamp}.md")

    @property
    def pending_prompt(self) -> Optional[str]:
        return self._prompt_text

    @property
    def pending_attachments(self) -> list[str]:
        return [p.name for p in self._attachments]
