#!/usr/bin/env python3
"""
GeoIP Database Update CLI

Command-line interface for the GeoIP Database Update System.

Usage:
    python3 geodb_update_cli.py --help
    python3 geodb_update_cli.py -f /usr/local/etc/GeoIP.conf update
    python3 geodb_update_cli.py -d /var/lib/GeoIP --parallelism 4 update
    python3 geodb_update_cli.py status
    python3 geodb_update_cli.py schedule --interval-minutes 720
"""

import sys
import json
import argparse
import logging
import traceback

from geodb_update import DEFAULT_CONFIG_FILE, DEFAULT_DATABASE_DIRECTORY, __version__
from geodb_update.config import Config, load_config
from geodb_update.errors import ConfigError, UpdateError
from geodb_update.orchestrator import UpdateOrchestrator, log_notification_handler
from geodb_update.scheduler import (
    ScheduleConfig,
    UpdateScheduler,
    run_forever,
    scheduled_job_log_handler
)

logger = logging.getLogger('geodb_update.cli')

SAMPLE_CONFIG = """\
# GeoIP.conf file for geodb-update

# Enter your account ID and license key below.
AccountID YOUR_ACCOUNT_ID_HERE
LicenseKey YOUR_LICENSE_KEY_HERE

# Space-separated list of database edition IDs.
EditionIDs GeoLite2-ASN GeoLite2-City GeoLite2-Country

# The directory to store the database files. Defaults to {database_directory}
# DatabaseDirectory {database_directory}

# Whether to preserve modification times of files downloaded from the server.
# PreserveFileTimes 0

# The lock file to use. Defaults to ".geoipupdate.lock" under DatabaseDirectory.
# LockFile {database_directory}/.geoipupdate.lock

# How long to retry failed downloads, measured from the first attempt.
# RetryFor 5m

# Number of editions downloaded at the same time.
# Parallelism 1
"""


def setup_logging(verbose: bool = False, log_file: str = None):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    format_str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(level=level, format=format_str, handlers=handlers)


def create_config(args) -> Config:
    """Load configuration and apply command line overrides."""
    return load_config(
        args.config_file,
        database_directory=args.database_directory,
        parallelism=args.parallelism,
        verbose=args.verbose or None
    )


def report_error(args, message: str, error: BaseException):
    print(f"{message}: {error}", file=sys.stderr)
    if args.stack_trace:
        traceback.print_exception(type(error), error, error.__traceback__, file=sys.stderr)


def cmd_update(args) -> int:
    """Execute an update run."""
    config = create_config(args)

    if config.verbose:
        logger.info(f"geodb-update version {__version__}")
        logger.info(f"Using config file {args.config_file}")
        logger.info(f"Using database directory {config.database_directory}")

    orchestrator = UpdateOrchestrator(config)
    if config.verbose:
        orchestrator.add_notification_handler(log_notification_handler)
    result = orchestrator.run()

    if getattr(args, 'output', None) == 'json':
        print(json.dumps(result.to_dict(), indent=2))
    else:
        for outcome in result.outcomes:
            line = f"{outcome.edition_id}: {outcome.status.value}"
            if outcome.error is not None:
                line += f" ({outcome.error})"
            print(line)

    if not result.success:
        try:
            result.raise_for_failures()
        except UpdateError as e:
            report_error(args, "error retrieving updates", e)
        return 1

    return 0


def cmd_status(args) -> int:
    """Show local database status."""
    config = create_config(args)
    orchestrator = UpdateOrchestrator(config)

    print(f"Database directory: {config.database_directory}")
    print(f"Lock file: {config.lock_file}")
    print()

    for info in orchestrator.get_status():
        if not info.get('exists'):
            print(f"{info['edition_id']}: not downloaded")
            continue

        print(f"{info['edition_id']}:")
        print(f"  Path: {info['file_path']}")
        print(f"  Hash: {info['file_hash']}")
        print(f"  Size: {info['file_size']:,} bytes")
        print(f"  Modified: {info['modified_time'].strftime('%Y-%m-%d %H:%M:%S')}")

    orchestrator.fetcher.close()
    return 0


def cmd_schedule(args) -> int:
    """Run updates periodically until interrupted."""
    config = create_config(args)

    if not args.interval_minutes and not args.daily_at:
        print("Either --interval-minutes or --daily-at is required", file=sys.stderr)
        return 1

    scheduler = UpdateScheduler(config)
    scheduler.add_notification_handler(scheduled_job_log_handler)
    scheduler.add_scheduled_job(ScheduleConfig(
        name='update',
        interval_minutes=args.interval_minutes,
        daily_time=args.daily_at,
        max_consecutive_failures=args.max_failures
    ))

    if args.run_now:
        scheduler.execute_job('update')

    logger.info("Scheduler running (press Ctrl+C to stop)")
    run_forever(scheduler)

    # Only reached once the job was disabled after repeated failures
    print(f"Scheduled updates stopped after {args.max_failures} consecutive failed runs", file=sys.stderr)
    return 1


def cmd_create_config(args) -> int:
    """Create a sample configuration file."""
    with open(args.output, 'w') as f:
        f.write(SAMPLE_CONFIG.format(database_directory=DEFAULT_DATABASE_DIRECTORY))

    print(f"Sample configuration created: {args.output}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Keep GeoIP binary databases up to date',
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        '-f', '--config-file',
        default=DEFAULT_CONFIG_FILE,
        help=f'Configuration file (default: {DEFAULT_CONFIG_FILE})'
    )
    parser.add_argument(
        '-d', '--database-directory',
        help='Store databases in this directory (overrides the config file)'
    )
    parser.add_argument(
        '--parallelism',
        type=int,
        default=0,
        help='Number of editions downloaded in parallel (overrides the config file)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose output'
    )
    parser.add_argument(
        '--stack-trace',
        action='store_true',
        help='Show a traceback on errors'
    )
    parser.add_argument(
        '--log-file',
        help='Also write log messages to this file'
    )
    parser.add_argument(
        '-V', '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    update_parser = subparsers.add_parser('update', help='Update the configured databases')
    update_parser.add_argument(
        '--output',
        choices=['text', 'json'],
        default='text',
        help='Result format (default: text)'
    )

    subparsers.add_parser('status', help='Show local database status')

    schedule_parser = subparsers.add_parser('schedule', help='Run updates periodically')
    schedule_parser.add_argument(
        '--interval-minutes',
        type=int,
        help='Run an update every N minutes'
    )
    schedule_parser.add_argument(
        '--daily-at',
        help='Run an update every day at HH:MM'
    )
    schedule_parser.add_argument(
        '--max-failures',
        type=int,
        default=3,
        help='Stop after this many consecutive failed runs (default: 3)'
    )
    schedule_parser.add_argument(
        '--run-now',
        action='store_true',
        help='Run an update immediately before waiting for the schedule'
    )

    config_parser = subparsers.add_parser('create-config', help='Create sample configuration file')
    config_parser.add_argument(
        '--output',
        default='GeoIP.conf',
        help='Output file path (default: GeoIP.conf)'
    )

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.log_file)

    commands = {
        None: cmd_update,
        'update': cmd_update,
        'status': cmd_status,
        'schedule': cmd_schedule,
        'create-config': cmd_create_config,
    }

    try:
        return commands[args.command](args)
    except ConfigError as e:
        report_error(args, f"error loading configuration file {args.config_file}", e)
        return 1
    except UpdateError as e:
        report_error(args, "error retrieving updates", e)
        return 1


def run():
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n⚠️  Operation cancelled by user", file=sys.stderr)
        sys.exit(130)


if __name__ == '__main__':
    run()
