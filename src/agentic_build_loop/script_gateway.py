"""Pipeline gateway backed by a local build script.

The script is launched detached. It is expected to push the build input,
wait for the remote pipeline, place ``error_summary.txt`` and
``error_files.txt`` under ``build_error_logs/`` if the build failed, and
finally create ``build_complete.flag``.
"""

import logging
import os
import shlex
import subprocess
import threading
import time
from typing import Callable, Optional

from agentic_build_loop.collaborators import PipelineGateway
from agentic_build_loop.constants import BUILD_POLL_INTERVAL_SECONDS
from agentic_build_loop.loop_state import BuildResult
from agentic_build_loop.storage import StateLayout
from agentic_build_loop.waiting import wait_until

logger = logging.getLogger(__name__)


class ScriptPipelineGateway(PipelineGateway):
    """Runs a build command and watches for its completion flag."""

    def __init__(
        self,
        layout: StateLayout,
        build_command: str,
        poll_interval: float = BUILD_POLL_INTERVAL_SECONDS,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], object]] = None,
    ):
        self.layout = layout
        self.build_command = build_command
        self.poll_interval = poll_interval
        self.stop_event = stop_event
        self._clock = clock
        self._sleep = sleep
        self.last_process: Optional[subprocess.Popen] = None

    def clear_completion_signal(self) -> None:
        self.layout.clear_completion_flag()

    def trigger(self) -> None:
        """
        Clear the previous build's signals and launch the build command.

        The fingerprint record is left in place. A launch
        failure is logged; the subsequent poll then times out.
        """
        self.layout.clear_completion_flag()
        self.layout.clear_failure_artifacts()

        env = dict(os.environ)
        env["BUILDLOOP_BASE_DIR"] = str(self.layout.base_dir)
        env["BUILDLOOP_OUTPUT_FILE"] = str(self.layout.output_file)
        env["BUILDLOOP_COMPLETION_FLAG"] = str(self.layout.completion_flag)
        env["BUILDLOOP_ERROR_LOGS_DIR"] = str(self.layout.error_logs_dir)

        try:
            cmd = shlex.split(self.build_command)
            self.last_process = subprocess.Popen(
                cmd,
                cwd=str(self.layout.base_dir),
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
            logger.info("Build command launched (pid %d)", self.last_process.pid)
        except (OSError, ValueError) as e:
            self.last_process = None
            logger.error("Failed to launch build command %r: %s", self.build_command, e)

    def poll_outcome(self, timeout: float) -> BuildResult:
        flag = self.layout.completion_flag
        started = self._clock()
        completed = wait_until(
            flag.exists,
            timeout=timeout,
            interval=self.poll_interval,
            stop_event=self.stop_event,
            clock=self._clock,
            sleep=self._sleep,
        )
        if not completed:
            elapsed = self._clock() - started
            if self.stop_event is not None and self.stop_event.is_set():
                logger.warning("Build wait cancelled after %.1fs", elapsed)
            else:
                logger.warning("Build did not complete after %.1fs (timeout %.0fs)", elapsed, timeout)
            return BuildResult.TIMEOUT

        if self.layout.summary_report.exists():
            logger.info("Build FAILED, error logs present")
            return BuildResult.FAILURE
        logger.info("Build SUCCEEDED")
        return BuildResult.SUCCESS
