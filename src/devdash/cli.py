"""CLI entry point for devdash."""

import argparse
import dataclasses
import logging
import sys

import devdash.io.logging_setup
import devdash.settings
from devdash.app.runtime import build_controllers, build_runtime
from devdash.demo import DEMO_SUBJECTS, SimulatedFetcher, SimulatedSaver
from devdash.io.file_backend import FileBackend

logger = logging.getLogger(__name__)


def _format_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "KB", "MB"):
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def _print_cache_stats(backend: FileBackend) -> None:
    stats = backend.stats()
    print(f"cache: {backend.path}")
    print(f"  entries:  {stats.total_entries} ({_format_size(stats.total_bytes)})")
    print(f"  subjects: {stats.subject_count}")
    for kind, count in sorted(stats.kind_counts.items()):
        print(f"    {kind:<12} {count}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Terminal dashboard for a fleet of networked devices")
    parser.add_argument(
        "--subjects",
        type=str,
        default=",".join(DEMO_SUBJECTS),
        help="Comma-separated device ids (default: the simulated demo fleet)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help="Log level (default: $DEVDASH_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--no-persist", action="store_true", help="Keep the cache in memory only"
    )
    parser.add_argument(
        "--failure-rate",
        type=float,
        default=0.1,
        help="Simulated fetch failure probability (default: 0.1)",
    )
    parser.add_argument(
        "--seed", type=int, default=None, help="Seed for the simulated fleet"
    )
    parser.add_argument(
        "--cache-stats",
        action="store_true",
        default=False,
        help="Print persistent cache statistics and exit.",
    )
    parser.add_argument(
        "--clear-cache",
        action="store_true",
        default=False,
        help="Delete every persisted cache entry and exit.",
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    # [LAW:single-enforcer] Runtime logger configuration is centralized in io.logging_setup.
    # The TUI owns the terminal, so logs go to the rotating file only.
    log_runtime = devdash.io.logging_setup.configure(args.log_level, stream=False)
    logger.info(
        "logging configured level=%s file=%s",
        log_runtime.level_name,
        log_runtime.file_path,
    )

    settings = devdash.settings.load_dashboard_settings()

    if args.cache_stats or args.clear_cache:
        backend = FileBackend(settings.cache_dir)
        if args.clear_cache:
            backend.clear()
            print(f"cleared {backend.path}")
        else:
            _print_cache_stats(backend)
        return 0

    if args.no_persist:
        settings = dataclasses.replace(settings, persist_cache=False)

    subjects = [s.strip() for s in args.subjects.split(",") if s.strip()]
    if not subjects:
        print("no subjects given", file=sys.stderr)
        return 2

    runtime = build_runtime(
        settings,
        SimulatedFetcher(failure_rate=args.failure_rate, seed=args.seed),
        SimulatedSaver(),
    )
    build_controllers(runtime)

    # Imported late so --cache-stats never pays for Textual startup.
    from devdash.tui.app import DashboardApp

    app = DashboardApp(runtime, subjects)
    try:
        app.run()
    finally:
        runtime.shutdown()
        # Dump buffered errors now that the terminal is restored
        if app.error_log:
            logger.error("[devdash] Errors during session:")
            for line in app.error_log:
                logger.error("  %s", line)
            print(f"errors were logged to {log_runtime.file_path}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
