"""CLI entrypoint for the build loop."""

import logging
import signal
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv

from agentic_build_loop.config import ConfigError, load_config

# Load .env file on CLI startup
load_dotenv()

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def _config_path(config_file: Optional[str]) -> Optional[Path]:
    return Path(config_file) if config_file else None


@click.group()
@click.version_option(package_name="agentic-build-loop")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    help="Logging level (default: WARNING)",
)
def cli(log_level: str):
    """Build loop CLI - drive AI output through a build pipeline until it passes."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option(
    "--base-dir",
    type=click.Path(),
    default=None,
    help="Base directory for loop state (default: BUILDLOOP_BASE_DIR or ~/.agentic-build-loop)",
)
def init(base_dir: Optional[str]):
    """Create the loop's state directories and mailbox."""
    from agentic_build_loop.mailbox_agent import MailboxResponseAgent
    from agentic_build_loop.storage import StateLayout

    try:
        config = load_config(require_build_command=False)
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)

    layout = StateLayout(Path(base_dir) if base_dir else config.base_dir)
    click.echo(f"Initializing build loop at: {layout.base_dir}")

    layout.ensure_dirs()
    mailbox = MailboxResponseAgent(layout)
    mailbox.ensure_dirs()
    for directory in (layout.error_logs_dir, layout.reports_dir, mailbox.inbox, mailbox.outbox, mailbox.downloads_dir):
        click.echo(f"  Created: {directory.relative_to(layout.base_dir)}/")

    click.echo(f"\nBuild loop initialized at {layout.base_dir}")
    click.echo("Next steps:")
    click.echo("  1. Set BUILDLOOP_BUILD_COMMAND in your environment or .env file")
    click.echo("  2. Run 'buildloop run --help' to see available options")


@cli.command()
@click.option("--config", "config_file", type=click.Path(exists=True), help="Loop config file (YAML or JSON)")
def check_config(config_file: Optional[str]):
    """Check that the loop configuration is complete and valid."""
    try:
        config = load_config(_config_path(config_file), require_build_command=True)
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)

    click.echo("Configuration loaded successfully!")
    click.echo(f"  base_dir:              {config.base_dir}")
    click.echo(f"  build_command:         {config.build_command}")
    click.echo(f"  extraction_mode:       {config.extraction_mode.value}")
    click.echo(f"  max_iterations:        {config.max_iterations}")
    click.echo(f"  max_retries_per_state: {config.max_retries_per_state}")
    click.echo(f"  max_recoveries:        {config.max_recoveries}")
    click.echo(f"  build_timeout:         {config.build_timeout_seconds:.0f}s")
    click.echo(f"  response_timeout:      {config.response_timeout_seconds:.0f}s")
    click.echo(f"  webhook:               {'[set]' if config.webhook_url else '[not set]'}")


@cli.command("run")
@click.option("--config", "config_file", type=click.Path(exists=True), help="Loop config file (YAML or JSON)")
@click.option("--fresh", is_flag=True, help="Discard the checkpoint and start from the beginning")
@click.option("--clear-fingerprint", is_flag=True, help="With --fresh, also forget the last failure fingerprint")
@click.option(
    "--mode",
    type=click.Choice(["INLINE_BLOCK", "DOWNLOADED_FILE", "PLAIN_TEXT"], case_sensitive=False),
    default=None,
    help="Override the extraction mode for this run",
)
@click.option(
    "--no-trace",
    is_flag=True,
    help="Disable LangGraph tracing (run without graph wrapper)",
)
@click.option("--quiet", is_flag=True, help="Do not print phase changes")
def run_loop_cmd(
    config_file: Optional[str],
    fresh: bool,
    clear_fingerprint: bool,
    mode: Optional[str],
    no_trace: bool,
    quiet: bool,
):
    """Run the build loop until the build passes, retries run out, or you stop it.

    Resumes from the last checkpoint unless --fresh is given. Ctrl-C asks
    the loop to stop at the next phase boundary; run again to resume.

    Exit codes: 0 build succeeded, 1 loop gave up or crashed, 2 stopped by user.
    """
    from agentic_build_loop.loop_runner import build_engine, run_loop
    from agentic_build_loop.loop_state import ExtractionMode, LoopStatus
    from agentic_build_loop.observers import ConsoleObserver

    try:
        config = load_config(_config_path(config_file), require_build_command=True)
        if mode:
            config.extraction_mode = ExtractionMode(mode.upper())
        engine = build_engine(config, observer=None if quiet else ConsoleObserver())
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)

    def _request_stop(signum, frame):
        click.echo("\nStop requested, finishing current phase...", err=True)
        engine.request_stop()

    previous_int = signal.signal(signal.SIGINT, _request_stop)
    previous_term = signal.signal(signal.SIGTERM, _request_stop)

    click.echo(f"Running build loop in: {config.base_dir}")
    if not no_trace:
        click.echo("  (LangGraph tracing enabled)")
    click.echo()

    try:
        outcome = run_loop(
            config,
            engine=engine,
            use_graph=not no_trace,
            fresh=fresh,
            clear_fingerprint=clear_fingerprint,
        )
    finally:
        signal.signal(signal.SIGINT, previous_int)
        signal.signal(signal.SIGTERM, previous_term)

    if outcome.status == LoopStatus.SUCCEEDED:
        raise SystemExit(0)
    if outcome.status == LoopStatus.CANCELLED:
        raise SystemExit(2)
    raise SystemExit(1)


@cli.command()
@click.option("--config", "config_file", type=click.Path(exists=True), help="Loop config file (YAML or JSON)")
def status(config_file: Optional[str]):
    """Show the loop's checkpoint, failure fingerprint and recent runs.

    Read-only.
    """
    from agentic_build_loop.observe import print_summary
    from agentic_build_loop.storage import StateLayout

    try:
        config = load_config(_config_path(config_file), require_build_command=False)
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)

    print_summary(StateLayout(config.base_dir))


@cli.command()
@click.option("--config", "config_file", type=click.Path(exists=True), help="Loop config file (YAML or JSON)")
@click.option("--fingerprint", "clear_fingerprint", is_flag=True, help="Also forget the last failure fingerprint")
@click.confirmation_option(prompt="Discard the loop checkpoint?")
def reset(config_file: Optional[str], clear_fingerprint: bool):
    """Clear the checkpoint so the next run starts from the beginning."""
    from agentic_build_loop.checkpoint import CheckpointStore
    from agentic_build_loop.fingerprint import FingerprintStore
    from agentic_build_loop.storage import StateLayout

    try:
        config = load_config(_config_path(config_file), require_build_command=False)
    except ConfigError as e:
        click.echo(f"Configuration error:\n{e}", err=True)
        raise SystemExit(1)

    layout = StateLayout(config.base_dir)
    try:
        CheckpointStore(layout.checkpoint_file).clear()
        layout.clear_completion_flag()
        if clear_fingerprint:
            FingerprintStore(layout.fingerprint_file, layout.summary_report).clear()
    except OSError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    click.echo("Checkpoint cleared.")
    if clear_fingerprint:
        click.echo("Failure fingerprint cleared.")


if __name__ == "__main__":
    cli()
