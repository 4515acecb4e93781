"""Observer implementations: logging, webhook, fan-out."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

import httpx

from agentic_build_loop.collaborators import LoopObserver
from agentic_build_loop.loop_state import LoopOutcome, LoopStatus, Phase, now_ms

logger = logging.getLogger(__name__)


class LoggingObserver(LoopObserver):
    """Reports loop events through the standard logger."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def on_phase_change(self, iteration: int, phase: Phase) -> None:
        self.log.info("Iteration %d: %s", iteration, phase.description)

    def on_loop_finished(self, outcome: LoopOutcome) -> None:
        if outcome.status == LoopStatus.SUCCEEDED:
            self.log.info("Build succeeded after %d iteration(s)", outcome.iteration)
        else:
            self.log.warning(
                "Loop ended %s at %s: %s",
                outcome.status.value, outcome.phase.value, outcome.reason,
            )


class ConsoleObserver(LoopObserver):
    """Prints phase changes and log lines for interactive runs."""

    def on_phase_change(self, iteration: int, phase: Phase) -> None:
        print(f"[iter {iteration:>2}] {phase.description}")

    def on_log_line(self, message: str, is_error: bool = False) -> None:
        marker = "!" if is_error else " "
        print(f"        {marker} {message}")

    def on_loop_finished(self, outcome: LoopOutcome) -> None:
        icon = "✓" if outcome.succeeded else "✗"
        print(f"{icon} {outcome.status.value}: {outcome.reason} (iteration {outcome.iteration})")


class WebhookObserver(LoopObserver):
    """
    Posts loop events as JSON to a webhook.

    Events are handed to a single background worker, so the loop never
    waits on the network and delivery keeps event order. Network and HTTP
    errors are logged and dropped. Queued events are drained when the loop
    finishes.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        include_log_lines: bool = False,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.include_log_lines = include_log_lines
        self._client = client
        self._owns_client = client is None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = threading.Lock()

    def _submit(self, event: dict) -> None:
        event["timestampMs"] = now_ms()
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="webhook")
            future = self._executor.submit(self._post, event)
        future.add_done_callback(_log_unexpected_failure)

    def _post(self, event: dict) -> None:
        # Runs on the worker thread only
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        try:
            response = self._client.post(self.url, json=event, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning("Webhook returned %d for %s event", e.response.status_code, event["event"])
        except httpx.HTTPError as e:
            logger.warning("Webhook delivery failed for %s event: %s", event["event"], e)

    def close(self) -> None:
        """Deliver everything queued so far, then stop the worker."""
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def on_phase_change(self, iteration: int, phase: Phase) -> None:
        self._submit({
            "event": "phase_change",
            "iteration": iteration,
            "phase": phase.value,
            "description": phase.description,
        })

    def on_log_line(self, message: str, is_error: bool = False) -> None:
        if self.include_log_lines or is_error:
            self._submit({"event": "log", "message": message, "isError": is_error})

    def on_loop_finished(self, outcome: LoopOutcome) -> None:
        self._submit({"event": "finished", **outcome.to_dict()})
        self.close()


def _log_unexpected_failure(future: Future) -> None:
    error = future.exception()
    if error is not None:
        logger.error("Webhook worker failed: %r", error)


class CompositeObserver(LoopObserver):
    """Fans events out to several observers; one failing does not stop the rest."""

    def __init__(self, *observers: LoopObserver):
        self.observers = list(observers)

    def _each(self, method: str, *args) -> None:
        for observer in self.observers:
            try:
                getattr(observer, method)(*args)
            except Exception:
                logger.exception("%s.%s failed", type(observer).__name__, method)

    def on_phase_change(self, iteration: int, phase: Phase) -> None:
        self._each("on_phase_change", iteration, phase)

    def on_log_line(self, message: str, is_error: bool = False) -> None:
        self._each("on_log_line", message, is_error)

    def on_loop_finished(self, outcome: LoopOutcome) -> None:
        self._each("on_loop_finished", outcome)
