# =============================================================================
# scripts/run_planning.py
# Command-line entry point for planning runs
# =============================================================================
"""
Run the planning optimizer or the swap refinement for a set of dates.

Usage:
    python scripts/run_planning.py optimize 2024-03-11 2024-03-12
    python scripts/run_planning.py swap 2024-03-11 2024-03-12 --planning-id <uuid>
    python scripts/run_planning.py optimize --week 2024-03-11 --dry-run

Prerequisites:
    - Configure .streamlit/secrets.toml ([supabase] url/key) or set
      SUPABASE_URL / SUPABASE_KEY
    - Optional optimizer settings in a TOML file (see config/optimizer.example.toml)
"""

import argparse
import json
import logging
import sys
from datetime import date, timedelta
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from planning_core.data import get_supabase_client
from planning_core.logging import setup_logging, get_logger
from planning_core.optimization import OptimizerConfig
from planning_core.services import ServiceResult, build_planning_service

logger = get_logger("run_planning")


def week_dates(monday: str):
    """Monday..Friday of the week starting at the given date."""
    start = date.fromisoformat(monday)
    start -= timedelta(days=start.weekday())
    return [start + timedelta(days=i) for i in range(5)]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Staff planning optimizer")
    parser.add_argument("--config", type=Path, help="Optimizer settings TOML file")
    parser.add_argument("--secrets", type=Path, help="Secrets TOML with [supabase] url/key")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--no-log-file", action="store_true", help="Log to stdout only")

    sub = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("optimize", "Allocate rooms and assign staff"),
        ("swap", "Refine stored assignments with staff swaps"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("dates", nargs="*", help="Target dates (YYYY-MM-DD)")
        cmd.add_argument("--week", help="Any date of the target week (Monday-Friday)")
        cmd.add_argument("--planning-id", help="Planning id to reuse")
        cmd.add_argument("--dry-run", action="store_true", help="Compute without writing")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=getattr(logging, args.log_level), log_to_file=not args.no_log_file)

    dates = list(args.dates)
    if args.week:
        dates += [d.isoformat() for d in week_dates(args.week)]
    if not dates:
        logger.error("No target dates given (use positional dates or --week)")
        return 2

    config = OptimizerConfig.from_toml(args.config) if args.config else OptimizerConfig()
    service = build_planning_service(get_supabase_client(args.secrets), config)

    if args.command == "optimize":
        result = service.run_optimization(dates, args.planning_id, persist=not args.dry_run)
    else:
        result = service.run_swap_refinement(dates, args.planning_id, persist=not args.dry_run)

    if not result:
        logger.error(f"[{result.error_code}] {result.error}")
        return 1

    print(json.dumps(result.data.to_dict(), indent=2, default=str))
    if result.outcome == ServiceResult.INFEASIBLE:
        logger.warning("No feasible staff assignment; rooms were kept")
        return 3
    return 0


if __name__ == "__main__":
    sys.exit(main())
