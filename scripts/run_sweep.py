#!/usr/bin/env python3
"""
Run the reconciliation sweep: repair multi-resource requests whose resource
decisions are all resolved but whose status never left pending_resource_staff.

Uses the settings and lab directory of a configuration set (lab_config/sets).
DATABASE_URL in the environment overrides the configured database.

Usage:
    python3 scripts/run_sweep.py [options]

Examples:
    # One pass against the default set, summary as JSON on stdout
    python3 scripts/run_sweep.py

    # Create tables and seed component stock first (fresh database)
    python3 scripts/run_sweep.py --create-schema

    # Keep running every interval_seconds until interrupted
    python3 scripts/run_sweep.py --loop
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the reconciliation sweep once, or on an interval.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config-set",
        default="default",
        help="Configuration set name (default: default).",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory holding configuration sets (default: lab_config/sets).",
    )
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables and seed component stock before sweeping.",
    )
    parser.add_argument(
        "--batch-limit",
        type=int,
        default=None,
        help="Override sweep.batch_limit from the configuration set.",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep sweeping every sweep.interval_seconds until interrupted.",
    )
    return parser.parse_args()


def _summary_dict(summary) -> dict:
    return {
        "examined": summary.examined,
        "repaired": summary.repaired,
        "moved_to_final_authority": summary.moved_to_final_authority,
        "auto_approved": summary.auto_approved,
        "rejected": summary.rejected,
        "unchanged": summary.unchanged,
        "errors": [
            {"request_id": str(e.request_id), "code": e.code, "message": e.message}
            for e in summary.errors
        ],
    }


def main() -> int:
    args = _parse_args()

    from dataclasses import replace

    from lab_batch.scheduler import SweepScheduler
    from lab_config import build_workflow_engine, get_directory, get_settings

    settings = get_settings(args.config_set, args.config_dir)
    if args.batch_limit is not None:
        settings = replace(settings, sweep=replace(settings.sweep, batch_limit=args.batch_limit))
    directory = get_directory(args.config_set, args.config_dir)
    engine = build_workflow_engine(settings, directory, create_schema=args.create_schema)

    if not args.loop:
        summary = engine.sweep()
        print(json.dumps(_summary_dict(summary), indent=2))
        return 1 if summary.errors else 0

    scheduler = SweepScheduler(engine.sweep, interval_seconds=settings.sweep.interval_seconds)
    scheduler.start()
    print(
        f"Sweeping every {settings.sweep.interval_seconds:g}s; Ctrl+C to stop.",
        file=sys.stderr,
    )
    try:
        while scheduler.is_running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
    if scheduler.last_summary is not None:
        print(json.dumps(_summary_dict(scheduler.last_summary), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
