"""Thin runner for the build loop.

Builds the engine from configuration, runs it, writes a run report.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from agentic_build_loop.checkpoint import CheckpointStore
from agentic_build_loop.collaborators import LoopObserver, PipelineGateway, ResponseAgent
from agentic_build_loop.config import ConfigError, LoopConfig
from agentic_build_loop.engine import OrchestrationEngine
from agentic_build_loop.fingerprint import FingerprintStore
from agentic_build_loop.loop_state import LoopOutcome, LoopStatus
from agentic_build_loop.observers import CompositeObserver, LoggingObserver, WebhookObserver
from agentic_build_loop.storage import StateLayout

logger = logging.getLogger(__name__)


def build_engine(
    config: LoopConfig,
    agent: Optional[ResponseAgent] = None,
    gateway: Optional[PipelineGateway] = None,
    observer: Optional[LoopObserver] = None,
    sleep=None,
) -> OrchestrationEngine:
    """
    Construct an engine with stores rooted at ``config.base_dir``.

    Collaborators that are not supplied default to the mailbox response
    agent and the script pipeline gateway. Their waits end only at their
    own deadlines; a stop request is honoured once the call returns.
    """
    layout = StateLayout(config.base_dir)
    layout.ensure_dirs()

    if agent is None:
        from agentic_build_loop.mailbox_agent import MailboxResponseAgent
        agent = MailboxResponseAgent(
            layout,
            stability_window=config.stability_window_seconds,
        )
        agent.ensure_dirs()

    if gateway is None:
        if not config.build_command:
            raise ConfigError("build_command is required when no pipeline gateway is supplied")
        from agentic_build_loop.script_gateway import ScriptPipelineGateway
        gateway = ScriptPipelineGateway(
            layout,
            config.build_command,
            poll_interval=config.build_poll_interval_seconds,
        )

    observers: list[LoopObserver] = [LoggingObserver()]
    if observer is not None:
        observers.append(observer)
    if config.webhook_url:
        observers.append(WebhookObserver(config.webhook_url))

    return OrchestrationEngine(
        agent=agent,
        gateway=gateway,
        checkpoints=CheckpointStore(layout.checkpoint_file),
        fingerprints=FingerprintStore(layout.fingerprint_file, layout.summary_report),
        layout=layout,
        config=config,
        observer=CompositeObserver(*observers),
        sleep=sleep,
    )


def write_run_report(
    outcome: LoopOutcome,
    output_dir: Path,
    start_time: datetime,
    end_time: datetime,
    config: LoopConfig,
) -> Path:
    """
    Write a structured run report to disk.

    Report format: JSON with the outcome and the limits in force.
    Filename: run_{timestamp}.json
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = end_time.strftime("%Y%m%d_%H%M%S")
    report_path = output_dir / f"run_{timestamp}.json"
    suffix = 1
    while report_path.exists():
        report_path = output_dir / f"run_{timestamp}_{suffix}.json"
        suffix += 1

    report = {
        **outcome.to_dict(),
        "extraction_mode": config.extraction_mode.value,
        "max_iterations": config.max_iterations,
        "max_retries_per_state": config.max_retries_per_state,
        "max_recoveries": config.max_recoveries,
        "start_time": start_time.isoformat(),
        "end_time": end_time.isoformat(),
        "duration_seconds": (end_time - start_time).total_seconds(),
    }

    report_path.write_text(json.dumps(report, indent=2))

    return report_path


def run_loop(
    config: LoopConfig,
    agent: Optional[ResponseAgent] = None,
    gateway: Optional[PipelineGateway] = None,
    observer: Optional[LoopObserver] = None,
    use_graph: bool = True,
    fresh: bool = False,
    clear_fingerprint: bool = False,
    engine: Optional[OrchestrationEngine] = None,
) -> LoopOutcome:
    """
    Main entry point: build the engine, run the loop, write a report.

    Args:
        config: Loop configuration
        agent: Response agent (default: mailbox agent under base_dir)
        gateway: Pipeline gateway (default: script gateway running build_command)
        observer: Extra observer for this run
        use_graph: If True, run through the LangGraph harness (default: True)
        fresh: If True, reset the checkpoint before starting
        clear_fingerprint: With fresh, also forget the last failure fingerprint
        engine: Prebuilt engine, overrides the collaborator arguments

    Returns:
        Final LoopOutcome. Unexpected faults are caught here, logged and
        reported as a FAILED outcome.
    """
    if engine is None:
        engine = build_engine(config, agent=agent, gateway=gateway, observer=observer)

    start_time = datetime.now()

    try:
        if fresh:
            engine.reset(clear_fingerprint=clear_fingerprint)

        if use_graph:
            from agentic_build_loop.loop_graph import run_loop_graph
            outcome = run_loop_graph(engine)
        else:
            outcome = engine.run()
    except Exception as e:
        logger.exception("Build loop crashed")
        outcome = LoopOutcome(
            status=LoopStatus.FAILED,
            phase=engine.phase,
            iteration=engine.iteration,
            reason=f"Crashed: {e}",
        )
        try:
            engine.observer.on_loop_finished(outcome)
        except Exception:
            logger.exception("Observer failed while reporting crash")

    end_time = datetime.now()

    report_path = write_run_report(
        outcome=outcome,
        output_dir=engine.layout.reports_dir,
        start_time=start_time,
        end_time=end_time,
        config=config,
    )

    print("Build loop finished.")
    print(f"  Status:    {outcome.status.value}")
    print(f"  Phase:     {outcome.phase.value}")
    print(f"  Iteration: {outcome.iteration}")
    if outcome.reason:
        print(f"  Reason:    {outcome.reason}")
    print(f"  Report:    {report_path}")

    return outcome
