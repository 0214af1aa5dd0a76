"""Admin commands for inspecting and maintaining agent memories.

Provides subcommands for statistics, health, cleanup, optimization,
backups, and restores.
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

from .config import EngineConfig, config_from_env, load_config
from .engine import MemoryEngine
from .logging import configure_logger
from .memory import BackupError


def _get_engine(args: argparse.Namespace) -> MemoryEngine:
    """Create a MemoryEngine with config loaded from disk and the environment."""
    config_path = Path(args.config) if getattr(args, "config", None) else None
    config: EngineConfig = config_from_env(load_config(config_path))
    return MemoryEngine(config, event_log=configure_logger(config.log_dir))


def _format_time(timestamp: float | None) -> str:
    if timestamp is None:
        return "never"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def cmd_stats(args: argparse.Namespace) -> int:
    """Show memory, usage, and backup statistics."""
    engine = _get_engine(args)
    stats = engine.comprehensive_statistics()
    overall, usage, backups = stats.overall, stats.usage, stats.backups

    print("\nMemory")
    print("-" * 40)
    print(f"{'Agents:':<24} {overall.total_agents}")
    print(f"{'Records:':<24} {overall.total_records}")
    print(f"{'Expired:':<24} {overall.expired_records}")
    print(f"{'Usage:':<24} {usage.usage_percentage:.1f}% of {usage.max_total_records}")
    print(f"{'Largest agent:':<24} {usage.max_records_per_agent}")
    print(f"{'Average per agent:':<24} {usage.average_records_per_agent:.1f}")

    if usage.records_by_kind:
        print("\nBy kind")
        print("-" * 40)
        for kind, count in sorted(usage.records_by_kind.items()):
            print(f"{kind + ':':<24} {count}")

    print("\nBackups")
    print("-" * 40)
    print(f"{'Available:':<24} {backups.available_backups}")
    print(f"{'Last backup:':<24} {_format_time(backups.last_backup_time)}")
    print(f"{'Directory:':<24} {backups.backup_dir}")
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    """Run a health check. Exit code 1 when unhealthy."""
    engine = _get_engine(args)
    report = engine.perform_health_check()

    label = "\033[32mhealthy\033[0m" if report.healthy else "\033[31munhealthy\033[0m"
    print(f"Status: {label}")
    print(report.status)
    if report.emergency_removed:
        print(f"Emergency cleanup removed {report.emergency_removed} memories")
    return 0 if report.healthy else 1


def cmd_cleanup(args: argparse.Namespace) -> int:
    """Remove expired memories, or everything older than --max-age."""
    engine = _get_engine(args)

    if args.max_age is not None:
        if args.max_age < 0:
            print("Error: --max-age cannot be negative.")
            return 1
        removed = engine.cleaner.force_cleanup_older_than(args.max_age)
        print(f"Removed {removed} memories older than {args.max_age} days")
        return 0

    if args.all:
        result = asyncio.run(engine.perform_comprehensive_cleanup())
        print(result.report)
        return 0 if result.success else 1

    removed = engine.cleaner.perform_automatic_cleanup()
    print(f"Removed {removed} expired memories")
    return 0


def cmd_optimize(args: argparse.Namespace) -> int:
    """Run the usage optimizer."""
    engine = _get_engine(args)
    engine.optimizer.perform_optimization()
    print(engine.optimizer.last_optimization_result)
    return 0


def cmd_backup(args: argparse.Namespace) -> int:
    """Write a snapshot of every agent."""
    engine = _get_engine(args)
    try:
        path = engine.backups.create_manual_backup(args.name)
    except (BackupError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    print(f"Backup created: {path}")
    return 0


def cmd_backups(args: argparse.Namespace) -> int:
    """List available snapshots, newest first."""
    engine = _get_engine(args)
    backups = engine.backups.list_available_backups()

    if not backups:
        print("No backups found.")
        return 0

    print(f"\n{'File':<60} {'Size':>10} {'Agents':>7}  Created")
    print("-" * 100)
    for info in backups:
        print(
            f"{info.file_name:<60} {info.formatted_size:>10} {info.agent_count:>7}  "
            f"{info.formatted_created_at}"
        )

    print(f"\nTotal: {len(backups)} backup(s)")
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore agents from a snapshot."""
    engine = _get_engine(args)

    path = Path(args.path)
    if not path.exists():
        candidate = engine.backups.backup_dir / args.path
        if candidate.exists():
            path = candidate

    try:
        restored = engine.backups.restore_from_backup(path, overwrite_existing=args.overwrite)
    except BackupError as e:
        print(f"Error: {e}")
        return 1

    summary = engine.backups.last_restore
    skipped = summary.skipped if summary else 0
    print(f"Restored {restored} agent(s), skipped {skipped}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the memkeeper CLI."""
    parser = argparse.ArgumentParser(
        prog="memkeeper",
        description="Manage agent memories",
    )
    parser.add_argument(
        "-c", "--config",
        help="Path to config file (default: ~/.memkeeper/config.json)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Sub-command help")

    subparsers.add_parser("stats", help="Show memory statistics")
    subparsers.add_parser("health", help="Run a health check")

    # cleanup command
    cleanup_parser = subparsers.add_parser("cleanup", help="Remove expired memories")
    cleanup_parser.add_argument(
        "--max-age",
        type=int,
        metavar="DAYS",
        help="Remove everything older than DAYS, ignoring retention",
    )
    cleanup_parser.add_argument(
        "-a", "--all",
        action="store_true",
        help="Clean up, optimize, and back up in one pass",
    )

    subparsers.add_parser("optimize", help="Run the usage optimizer")

    # backup command
    backup_parser = subparsers.add_parser("backup", help="Create a backup now")
    backup_parser.add_argument("-n", "--name", help="Label included in the file name")

    subparsers.add_parser("backups", help="List available backups")

    # restore command
    restore_parser = subparsers.add_parser("restore", help="Restore from a backup")
    restore_parser.add_argument("path", help="Backup file path or name")
    restore_parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Replace agents that already have data",
    )

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Run the CLI with given arguments.

    Args:
        argv: Command-line arguments. Uses sys.argv[1:] if None.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "stats": cmd_stats,
        "health": cmd_health,
        "cleanup": cmd_cleanup,
        "optimize": cmd_optimize,
        "backup": cmd_backup,
        "backups": cmd_backups,
        "restore": cmd_restore,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    return handler(args)


if __name__ == "__main__":
    sys.exit(run_cli())
