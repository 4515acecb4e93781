#!/usr/bin/env python3
"""Proof script for the build loop.

Runs the real mailbox agent and script gateway against a throwaway base
directory. A background thread plays the chat side: it answers first with
broken code, then with a fix once the failure prompt shows up in the outbox.
The "build" compiles the extracted Python and reports a SyntaxError the same
way a CI runner would.
"""

import shlex
import sys
import tempfile
import threading
import time
from pathlib import Path

from agentic_build_loop.config import LoopConfig
from agentic_build_loop.loop_runner import run_loop
from agentic_build_loop.observers import ConsoleObserver

BUILD_RUNNER = '''
import os, pathlib, traceback
output = pathlib.Path(os.environ["BUILDLOOP_OUTPUT_FILE"])
logs = pathlib.Path(os.environ["BUILDLOOP_ERROR_LOGS_DIR"])
try:
    compile(output.read_text(), str(output), "exec")
except SyntaxError:
    logs.mkdir(parents=True, exist_ok=True)
    (logs / "error_summary.txt").write_text(traceback.format_exc())
    (logs / "error_files.txt").write_text(output.name + "\\n")
pathlib.Path(os.environ["BUILDLOOP_COMPLETION_FLAG"]).touch()
'''

BROKEN_RESPONSE = '''Here you go:

```python
def greet(name):
    print("Hello, " + name

greet("World")
```
'''

FIXED_RESPONSE = '''Sorry about that, the call was missing a parenthesis:

```python
def greet(name):
    print("Hello, " + name)

greet("World")
```
'''


def play_chat(base_dir: Path, done: threading.Event) -> None:
    inbox = base_dir / "mailbox" / "inbox"
    outbox = base_dir / "mailbox" / "outbox"
    inbox.mkdir(parents=True, exist_ok=True)
    (inbox / "response.md").write_text(BROKEN_RESPONSE)

    while not done.is_set():
        # The agent archives the old answer right after writing the prompt
        if list(outbox.glob("prompt-*.json")) and not (inbox / "response.md").exists():
            (inbox / "response.md").write_text(FIXED_RESPONSE)
            return
        time.sleep(0.2)


def main():
    base_dir = Path(tempfile.mkdtemp(prefix="buildloop_proof_"))
    runner = base_dir / "build_runner.py"
    runner.write_text(BUILD_RUNNER)

    config = LoopConfig(
        base_dir=base_dir,
        build_command=f"{shlex.quote(sys.executable)} {shlex.quote(str(runner))}",
        max_iterations=5,
        step_delay_seconds=0,
        stability_window_seconds=0.5,
        response_timeout_seconds=15,
        build_timeout_seconds=30,
        build_poll_interval_seconds=0.2,
    )

    print(f"Base dir: {base_dir}")
    print("\n=== RUNNING BUILD LOOP ===")

    done = threading.Event()
    chat = threading.Thread(target=play_chat, args=(base_dir, done), daemon=True)
    chat.start()
    try:
        outcome = run_loop(config, observer=ConsoleObserver(), use_graph=False)
    finally:
        done.set()

    print("\n=== FINAL OUTPUT ===")
    print((base_dir / "ai-output.txt").read_text())

    if outcome.succeeded:
        print("✓ PROOF PASSED: build fixed after one failure round-trip")
    else:
        print(f"✗ PROOF FAILED: {outcome.status.value} - {outcome.reason}")
        sys.exit(1)


if __name__ == "__main__":
    main()
