#!/usr/bin/env python3
"""
ordrfm - Command Line Interface

Organizes album directories into a quality/artist/label/series layout with
journaled, rollback-capable moves.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console

from .. import __version__
from ..core.config_manager import ConfigManager, OrdrConfig, ORGANIZATION_MODES
from ..core.exceptions import ConfigurationError, OrdrError
from ..core.orchestrator import OrganizationService
from ..utils.progress import ProgressListener, ProgressReporter


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper())

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="ordrfm",
        description="Album organization by quality, artist, label and series",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"ordrfm v{__version__}"
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: from config, INFO)"
    )
    common.add_argument(
        "--log-file",
        type=str,
        help="Also write log output to this file"
    )
    common.add_argument(
        "--db",
        type=str,
        help="State database path (default: ordrfm_state.db)"
    )
    common.add_argument(
        "-c", "--config",
        type=str,
        help="Configuration file path (JSON format)"
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    # organize
    organize = subparsers.add_parser("organize", parents=[common],
                                     help="Organize album directories")
    organize.add_argument(
        "-s", "--source",
        required=True,
        help="Directory containing album directories"
    )
    organize.add_argument(
        "-d", "--destination",
        help="Root of the organized library"
    )
    organize.add_argument(
        "--unsorted",
        help="Directory for albums that could not be classified"
    )

    run_mode = organize.add_mutually_exclusive_group()
    run_mode.add_argument(
        "--move",
        dest="dry_run",
        action="store_false",
        default=None,
        help="Actually move files"
    )
    run_mode.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_true",
        help="Plan only; nothing is moved or persisted (default)"
    )

    organize.add_argument(
        "-p", "--parallel",
        nargs="?",
        type=int,
        const=0,
        default=None,
        metavar="N",
        help="Worker threads; without N uses min(CPU count, max_workers)"
    )
    organize.add_argument(
        "--enable-electronic",
        action="store_true",
        default=None,
        help="Enable label, series, remix and underground rules"
    )
    organize.add_argument(
        "--mode",
        choices=list(ORGANIZATION_MODES),
        help="Organization mode (default: hybrid)"
    )
    organize.add_argument(
        "--no-incremental",
        dest="incremental",
        action="store_false",
        default=None,
        help="Reprocess directories that were already organized"
    )

    enrichment = organize.add_argument_group("metadata enrichment")
    enrichment.add_argument(
        "--discogs",
        action="store_true",
        default=None,
        help="Query Discogs (needs a token)"
    )
    enrichment.add_argument(
        "--discogs-token",
        help="Discogs personal access token (or DISCOGS_TOKEN)"
    )
    enrichment.add_argument(
        "--musicbrainz",
        action="store_true",
        default=None,
        help="Query MusicBrainz"
    )
    enrichment.add_argument(
        "--no-enrichment",
        dest="enrichment",
        action="store_false",
        default=None,
        help="Use local tags only"
    )
    enrichment.add_argument(
        "--confidence-threshold",
        type=float,
        help="Minimum match confidence to apply catalog metadata (default: 0.7)"
    )

    organize.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable the progress bar"
    )

    # rollback
    rollback = subparsers.add_parser("rollback", parents=[common],
                                     help="Move files back to where they came from")
    target = rollback.add_mutually_exclusive_group(required=True)
    target.add_argument("--batch", help="Batch (job) id to roll back")
    target.add_argument("--operation", help="Single move operation id to roll back")
    rollback.add_argument(
        "--dry-run",
        dest="preview",
        action="store_true",
        help="Verify and list what would be restored"
    )

    # stats / recover
    subparsers.add_parser("stats", parents=[common], help="Show organization statistics")
    subparsers.add_parser("recover", parents=[common],
                          help="Resolve moves left pending by an interrupted run")

    return parser


def build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Map CLI flags onto configuration sections; unset flags are left out"""
    overrides: Dict[str, Dict[str, Any]] = {
        'organization': {},
        'enrichment': {},
        'processing': {},
        'ui': {},
    }

    def put(section: str, key: str, value):
        if value is not None:
            overrides[section][key] = value

    put('organization', 'destination_dir', getattr(args, 'destination', None))
    put('organization', 'unsorted_dir', getattr(args, 'unsorted', None))
    put('organization', 'organization_mode', getattr(args, 'mode', None))
    put('organization', 'enable_electronic', getattr(args, 'enable_electronic', None))

    put('enrichment', 'enabled', getattr(args, 'enrichment', None))
    put('enrichment', 'discogs_enabled', getattr(args, 'discogs', None))
    put('enrichment', 'discogs_token', getattr(args, 'discogs_token', None))
    put('enrichment', 'musicbrainz_enabled', getattr(args, 'musicbrainz', None))
    put('enrichment', 'confidence_threshold', getattr(args, 'confidence_threshold', None))

    put('processing', 'state_db_path', args.db)
    put('processing', 'incremental', getattr(args, 'incremental', None))
    put('processing', 'dry_run', getattr(args, 'dry_run', None))
    parallel = getattr(args, 'parallel', None)
    if parallel:
        overrides['processing']['max_workers'] = parallel

    put('ui', 'log_level', args.log_level)
    put('ui', 'log_file', args.log_file)

    return {k: v for k, v in overrides.items() if v}


def load_config(args: argparse.Namespace) -> Optional[OrdrConfig]:
    """Load and validate configuration; prints issues and returns None when invalid"""
    manager = ConfigManager()
    config = manager.load_config(project_config=args.config, cli_overrides=build_overrides(args))

    issues = manager.validate_config(config)
    if issues:
        for issue in issues:
            print(f"⚠️  Configuration issue: {issue}", file=sys.stderr)
        return None
    return config


def _reporter(config: OrdrConfig) -> ProgressReporter:
    return ProgressReporter(Console(no_color=not config.ui.color_output))


def run_organize(args: argparse.Namespace, config: OrdrConfig) -> int:
    """Submit a batch for the source directory and wait for it."""
    source = Path(args.source)
    if not source.is_dir():
        print(f"Error: Source directory does not exist: {args.source}", file=sys.stderr)
        return 1

    service = OrganizationService(config)
    # Sequential unless --parallel is given; bare --parallel picks the worker count automatically
    options = {'worker_count': 1}
    if args.parallel is not None:
        options['worker_count'] = args.parallel or None

    dry_run = config.processing.dry_run
    print(f"📁 Source: {source}")
    print(f"📂 Destination: {config.organization.destination_dir}")
    if dry_run:
        print("⚠️  DRY RUN MODE - No changes will be made (use --move to organize)")

    listener = ProgressListener(desc="Organizing",
                                disable=args.no_progress or config.ui.progress_mode == "none")
    service.add_listener(listener)

    job_id = service.submit_job(str(source), options)['job_id']
    listener.job_id = job_id
    try:
        service.wait(job_id)
    except KeyboardInterrupt:
        print("\n⚠️  Cancelling; albums in progress finish their current stage...", file=sys.stderr)
        service.cancel(job_id)
        service.wait(job_id)
    finally:
        listener.close()

    status = service.status(job_id)
    summary = service.summary(job_id)
    _reporter(config).batch_summary(status, summary)

    if not dry_run and summary.succeeded:
        print(f"↩️  Undo with: ordrfm rollback --batch {job_id}")

    if status['status'] == 'failed':
        return 1
    if status['status'] == 'cancelled':
        return 130
    return 1 if summary.failed else 0


def run_rollback(args: argparse.Namespace, config: OrdrConfig) -> int:
    service = OrganizationService(config)
    command = {'batchId': args.batch} if args.batch else {'operationId': args.operation}
    report = service.rollback(command, dry_run=args.preview)
    _reporter(config).rollback_report(report)
    return 1 if report['halted'] else 0


def run_stats(args: argparse.Namespace, config: OrdrConfig) -> int:
    service = OrganizationService(config)
    _reporter(config).organization_stats(service.stats())
    return 0


def run_recover(args: argparse.Namespace, config: OrdrConfig) -> int:
    service = OrganizationService(config)
    recovered = service.recover()
    print(f"✅ Recovery finished: {recovered['completed']} completed, {recovered['failed']} marked failed, "
          f"{recovered['cache_purged']} expired cache entries purged")
    return 0


COMMANDS = {
    'organize': run_organize,
    'rollback': run_rollback,
    'stats': run_stats,
    'recover': run_recover,
}


def main(argv=None) -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args)
    except ConfigurationError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    if config is None:
        return 1

    setup_logging(config.ui.log_level, config.ui.log_file)
    logger = logging.getLogger(__name__)
    logger.info(f"ordrfm v{__version__} starting: {args.command}")

    try:
        return COMMANDS[args.command](args, config)
    except KeyboardInterrupt:
        print("\n⚠️  Operation cancelled by user", file=sys.stderr)
        return 130
    except OrdrError as e:
        logger.error(f"❌ {type(e).__name__}: {e}")
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except Exception as e:
        logger.exception("Unexpected error occurred")
        print(f"❌ Unexpected error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
