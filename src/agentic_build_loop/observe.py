"""Minimal observation surface for the build loop.

Read-only. Shows the checkpoint, the stored failure fingerprint, the
failure artifacts currently on disk and recent run reports.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from agentic_build_loop.checkpoint import CheckpointStore
from agentic_build_loop.fingerprint import FingerprintStore
from agentic_build_loop.storage import StateLayout


def find_reports(reports_dir: Path) -> list[dict]:
    """Find all run reports, most recent first."""
    reports = []

    if not reports_dir.exists():
        return reports

    for f in reports_dir.glob("run_*.json"):
        try:
            data = json.loads(f.read_text())
            data["_report_file"] = str(f)
            reports.append(data)
        except (json.JSONDecodeError, IOError):
            pass

    reports.sort(key=lambda r: r.get("start_time", ""), reverse=True)
    return reports


def format_duration(seconds: float) -> str:
    """Format duration in human-readable form."""
    if seconds < 1:
        return f"{seconds*1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        mins = int(seconds // 60)
        secs = seconds % 60
        return f"{mins}m {secs:.0f}s"


def format_timestamp_ms(ms: int) -> str:
    if ms <= 0:
        return "-"
    return datetime.fromtimestamp(ms / 1000).isoformat(timespec="seconds")


def print_summary(layout: StateLayout, reports_dir: Optional[Path] = None) -> None:
    """
    Print a human-readable summary of the loop's persisted state.

    Goal: know where the loop is and how it last ended at a glance.
    """
    if reports_dir is None:
        reports_dir = layout.reports_dir

    checkpoint = CheckpointStore(layout.checkpoint_file).load()
    fingerprint = FingerprintStore(layout.fingerprint_file, layout.summary_report).load()
    reports = find_reports(reports_dir)

    print("=" * 60)
    print(f"BUILD LOOP STATUS: {layout.base_dir}")
    print("=" * 60)
    print()

    print("CHECKPOINT")
    print("-" * 40)
    if checkpoint:
        print(f"  Phase:       {checkpoint.phase.value} ({checkpoint.phase.description})")
        print(f"  Iteration:   {checkpoint.iteration}")
        print(f"  Updated:     {format_timestamp_ms(checkpoint.updated_at_ms)}")
    else:
        print("  None (next run starts fresh)")
    print()

    print("LAST FAILURE FINGERPRINT")
    print("-" * 40)
    if fingerprint:
        print(f"  Hash:        {fingerprint.content_hash[:16]}...")
        print(f"  Modified:    {format_timestamp_ms(fingerprint.observed_at_ms)}")
        print(f"  Iteration:   {fingerprint.iteration}")
    else:
        print("  None recorded")
    print()

    print("BUILD ARTIFACTS")
    print("-" * 40)
    print(f"  Output:      {'present' if layout.output_file.exists() else 'missing'}")
    print(f"  Completion:  {'flag set' if layout.completion_flag.exists() else 'no flag'}")
    print(f"  Summary:     {'present' if layout.summary_report.exists() else 'none'}")
    print(f"  Files:       {'present' if layout.files_report.exists() else 'none'}")
    print()

    if reports:
        latest = reports[0]
        print("LATEST RUN")
        print("-" * 40)
        print(f"  Status:      {latest.get('status')}")
        print(f"  Phase:       {latest.get('phase')}")
        print(f"  Iteration:   {latest.get('iteration')}")
        if latest.get("reason"):
            print(f"  Reason:      {latest['reason'][:50]}")
        if "duration_seconds" in latest:
            print(f"  Duration:    {format_duration(latest['duration_seconds'])}")
        print(f"  Time:        {latest.get('start_time', '')[:19]}")
        print()

        if len(reports) > 1:
            print("HISTORY")
            print("-" * 40)
            for r in reports[:5]:
                status_icon = "✓" if r.get("status") == "SUCCEEDED" else "✗"
                print(f"    {status_icon} {r.get('start_time', '')[:16]} - {r.get('status')}")
            if len(reports) > 5:
                print(f"    ... and {len(reports) - 5} more")
            print()

    print("VERDICT")
    print("-" * 40)
    if reports and reports[0].get("status") == "SUCCEEDED":
        print("  ✓ COMPLETE - Last run ended with a successful build")
    elif reports and reports[0].get("status") == "CANCELLED":
        print("  ◐ PAUSED - Stopped by user, will resume from checkpoint")
    elif reports:
        print(f"  ✗ {reports[0].get('status')} - {reports[0].get('reason', '')}")
    elif checkpoint:
        print("  ◐ IN PROGRESS - Checkpoint present, no finished run")
    else:
        print("  ? UNKNOWN - No runs recorded")
    print()
