"""Turning an AI response into build input, one strategy per extraction mode."""

import logging
import re
from pathlib import Path
from typing import Optional

from agentic_build_loop.loop_state import ExtractionMode

logger = logging.getLogger(__name__)

LANGUAGE_LABELS = frozenset({
    "kotlin", "java", "python", "bash", "shell", "javascript", "typescript",
    "xml", "json", "gradle", "swift", "cpp", "c", "html", "css", "yaml", "toml",
})

# Opening fence with optional info string, body, closing fence
_FENCE_RE = re.compile(r"^```[ \t]*([^\n`]*)\n(.*?)^```[ \t]*$", re.MULTILINE | re.DOTALL)

FILE_HEADER = "// FILE: {name}"


def extract_code_blocks(text: str) -> list[str]:
    """
    Pull code out of a response.

    Labelled fences (```kotlin, ```python, ...) are preferred. If there are
    none, any fenced block is used. With no fences at all, the largest
    paragraph of the response is returned as a single block.
    """
    labelled = []
    unlabelled = []
    for match in _FENCE_RE.finditer(text):
        label = match.group(1).strip().lower()
        body = match.group(2).rstrip("\n")
        if not body.strip():
            continue
        if label in LANGUAGE_LABELS:
            labelled.append(body)
        else:
            unlabelled.append(body)

    blocks = labelled or unlabelled
    if not blocks:
        logger.warning("No fenced code found, falling back to largest text block")
        largest = _largest_paragraph(text)
        if largest:
            blocks = [largest]

    logger.debug("Extracted %d code block(s)", len(blocks))
    return blocks


def _largest_paragraph(text: str) -> Optional[str]:
    best = None
    for paragraph in re.split(r"\n\s*\n", text):
        paragraph = paragraph.strip()
        if paragraph and (best is None or len(paragraph) > len(best)):
            best = paragraph
    return best


def extract_inline_block(text: str) -> Optional[str]:
    blocks = extract_code_blocks(text)
    if not blocks:
        return None
    return "\n\n".join(blocks) + "\n"


def extract_plain_text(text: str) -> Optional[str]:
    stripped = text.strip()
    if not stripped:
        return None
    return stripped + "\n"


def assemble_downloads(directory: Path, since_ms: int) -> Optional[str]:
    """
    Concatenate files that appeared in *directory* after *since_ms*.

    Each file is preceded by a ``// FILE: <name>`` header. Files are taken
    in name order. Returns None if nothing new was downloaded.
    """
    if not directory.is_dir():
        return None

    parts = []
    for path in sorted(directory.iterdir(), key=lambda p: p.name):
        if not path.is_file() or path.name.startswith("."):
            continue
        if path.stat().st_mtime_ns // 1_000_000 <= since_ms:
            continue
        parts.append(FILE_HEADER.format(name=path.name))
        parts.append(path.read_text(encoding="utf-8", errors="replace").rstrip("\n"))

    if not parts:
        return None
    return "\n".join(parts) + "\n"


def extract(mode: ExtractionMode, response_text: str, downloads_dir: Optional[Path] = None, since_ms: int = 0) -> Optional[str]:
    """Apply the strategy for *mode*. Returns None when nothing was extracted."""
    if mode == ExtractionMode.INLINE_BLOCK:
        return extract_inline_block(response_text)
    if mode == ExtractionMode.PLAIN_TEXT:
        return extract_plain_text(response_text)
    if mode == ExtractionMode.DOWNLOADED_FILE:
        if downloads_dir is None:
            return None
        return assemble_downloads(downloads_dir, since_ms)
    raise ValueError(f"Unknown extraction mode: {mode}")
