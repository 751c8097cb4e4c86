"""
Standalone entrypoint for running a build worker.

Any number of workers may run against the same database; each one claims
queued jobs atomically and processes them one at a time.

Usage:
    python -m storehub_worker [OPTIONS]
    storehub-worker [OPTIONS]  (after pip install)

Environment Variables:
    STOREHUB_DB_PATH: Database path (default: storehub.db)
    JOB_POLL_INTERVAL_MS: Milliseconds between claim attempts (default: 1000)
    STOREHUB_HEARTBEAT_INTERVAL: Seconds between heartbeat logs (default: 30)
    BUILD_TMP_DIR: Scratch directory for job working trees (default: system temp)
    S3_ENDPOINT, AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, S3_BUCKET,
    S3_PUBLIC_BASE_URL: Object store settings (required)
    TOKEN_ENC_KEY: 32-byte key for stored access tokens (optional)
    GITHUB_API_URL: Source host API (default: https://api.github.com)
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
import tempfile
from dataclasses import dataclass
from typing import Any

from storehub_common.errors import ConfigError
from storehub_persistence.sqlite_repository import SQLiteJobRepository
from storehub_storage.object_store import MinioObjectStore, parse_endpoint
from storehub_storage.publisher import ArtifactPublisher
from storehub_worker.build_runner import BuildRunner
from storehub_worker.processor import JobProcessor
from storehub_worker.source import GITHUB_API_URL, CredentialStore, SourceFetcher

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 1000
DEFAULT_HEARTBEAT_INTERVAL = 30.0


@dataclass
class StorageSettings:
    endpoint: str
    access_key: str
    secret_key: str
    bucket: str
    public_base_url: str


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="StoreHub build worker - builds and publishes component bundles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  STOREHUB_DB_PATH              Database path (default: storehub.db)
  JOB_POLL_INTERVAL_MS          Milliseconds between claim attempts (default: 1000)
  STOREHUB_HEARTBEAT_INTERVAL   Seconds between heartbeat logs (default: 30)
  BUILD_TMP_DIR                 Scratch directory (default: system temp dir)
  S3_ENDPOINT                   Object store endpoint, host:port or URL (required)
  AWS_ACCESS_KEY_ID             Object store access key (required)
  AWS_SECRET_ACCESS_KEY         Object store secret key (required)
  S3_BUCKET                     Bucket to publish into (required)
  S3_PUBLIC_BASE_URL            Public base URL of the bucket (required)
  TOKEN_ENC_KEY                 32-byte key for stored access tokens
  GITHUB_API_URL                Source host API (default: https://api.github.com)

Note: Command-line arguments override environment variables.

Examples:
  # Run with default settings
  storehub-worker

  # Poll every 5 seconds with a dedicated scratch directory
  storehub-worker --poll-interval-ms 5000 --scratch-dir /var/tmp/storehub

  # Enable debug logging
  storehub-worker --log-level DEBUG
        """,
    )

    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="Path to SQLite database file (default: STOREHUB_DB_PATH env or storehub.db)",
    )

    parser.add_argument(
        "--poll-interval-ms",
        type=int,
        default=None,
        help="Milliseconds between claim attempts (default: JOB_POLL_INTERVAL_MS env or 1000)",
    )

    parser.add_argument(
        "--heartbeat-interval",
        type=float,
        default=None,
        help="Seconds between heartbeat logs (default: STOREHUB_HEARTBEAT_INTERVAL env or 30)",
    )

    parser.add_argument(
        "--scratch-dir",
        type=str,
        default=None,
        help="Directory for per-job working trees (default: BUILD_TMP_DIR env or system temp)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    return parser.parse_args(argv)


def get_database_path(args: argparse.Namespace) -> str:
    """Get the database path from CLI args or environment or use default."""
    if args.db_path:
        return args.db_path
    return os.environ.get("STOREHUB_DB_PATH", "storehub.db")


def get_poll_interval(args: argparse.Namespace) -> float:
    """
    Get the poll interval from CLI args or environment.

    Args:
        args: Parsed command-line arguments

    Returns:
        Seconds between claim attempts
    """
    default = DEFAULT_POLL_INTERVAL_MS / 1000

    if args.poll_interval_ms is not None:
        if args.poll_interval_ms <= 0:
            logger.warning(
                f"Invalid poll interval={args.poll_interval_ms}ms, using default "
                f"{DEFAULT_POLL_INTERVAL_MS}ms"
            )
            return default
        return args.poll_interval_ms / 1000

    raw = os.environ.get("JOB_POLL_INTERVAL_MS", "")
    if not raw:
        return default
    try:
        interval_ms = int(raw)
    except ValueError:
        logger.warning(
            f"Invalid JOB_POLL_INTERVAL_MS={raw}, using default {DEFAULT_POLL_INTERVAL_MS}ms"
        )
        return default
    if interval_ms <= 0:
        logger.warning(
            f"Invalid JOB_POLL_INTERVAL_MS={raw}, using default {DEFAULT_POLL_INTERVAL_MS}ms"
        )
        return default
    return interval_ms / 1000


def get_heartbeat_interval(args: argparse.Namespace) -> float:
    """Get the heartbeat interval in seconds from CLI args or environment."""
    if args.heartbeat_interval is not None:
        if args.heartbeat_interval <= 0:
            logger.warning(
                f"Invalid heartbeat interval={args.heartbeat_interval}, "
                f"using default {DEFAULT_HEARTBEAT_INTERVAL}"
            )
            return DEFAULT_HEARTBEAT_INTERVAL
        return args.heartbeat_interval

    try:
        interval = float(
            os.environ.get("STOREHUB_HEARTBEAT_INTERVAL", str(DEFAULT_HEARTBEAT_INTERVAL))
        )
        if interval <= 0:
            logger.warning(
                f"Invalid STOREHUB_HEARTBEAT_INTERVAL={interval}, "
                f"using default {DEFAULT_HEARTBEAT_INTERVAL}"
            )
            return DEFAULT_HEARTBEAT_INTERVAL
        return interval
    except ValueError:
        logger.warning(
            f"Invalid STOREHUB_HEARTBEAT_INTERVAL="
            f"{os.environ.get('STOREHUB_HEARTBEAT_INTERVAL')}, "
            f"using default {DEFAULT_HEARTBEAT_INTERVAL}"
        )
        return DEFAULT_HEARTBEAT_INTERVAL


def get_scratch_dir(args: argparse.Namespace) -> str:
    """Get the scratch directory from CLI args or environment or the system temp dir."""
    if args.scratch_dir:
        return args.scratch_dir
    return os.environ.get("BUILD_TMP_DIR") or tempfile.gettempdir()


def get_storage_settings() -> StorageSettings:
    """
    Read the object store settings from the environment.

    Raises:
        ConfigError: If any required setting is missing
    """
    names = {
        "endpoint": "S3_ENDPOINT",
        "access_key": "AWS_ACCESS_KEY_ID",
        "secret_key": "AWS_SECRET_ACCESS_KEY",
        "bucket": "S3_BUCKET",
        "public_base_url": "S3_PUBLIC_BASE_URL",
    }
    values = {field: os.environ.get(env, "").strip() for field, env in names.items()}

    missing = [names[field] for field, value in values.items() if not value]
    if missing:
        raise ConfigError(f"missing object store settings: {', '.join(missing)}")

    return StorageSettings(**values)


def get_github_api_url() -> str:
    return os.environ.get("GITHUB_API_URL") or GITHUB_API_URL


def build_processor(
    args: argparse.Namespace, repository: SQLiteJobRepository
) -> JobProcessor:
    """
    Wire the processor and its collaborators from configuration.

    Raises:
        ConfigError: If the object store settings are incomplete or invalid
    """
    storage = get_storage_settings()
    host, secure = parse_endpoint(storage.endpoint)
    store = MinioObjectStore(
        endpoint=host,
        access_key=storage.access_key,
        secret_key=storage.secret_key,
        bucket=storage.bucket,
        public_base_url=storage.public_base_url,
        secure=secure,
    )

    fetcher = SourceFetcher(
        credentials=CredentialStore(repository),
        api_url=get_github_api_url(),
    )

    return JobProcessor(
        repository=repository,
        fetcher=fetcher,
        builder=BuildRunner(),
        publisher=ArtifactPublisher(store),
        scratch_dir=get_scratch_dir(args),
        poll_interval=get_poll_interval(args),
        heartbeat_interval=get_heartbeat_interval(args),
    )


async def run_worker(args: argparse.Namespace) -> None:
    """
    Initialize and run the build worker.

    Args:
        args: Parsed command-line arguments

    Runs until interrupted by SIGINT or SIGTERM. A job in progress at that
    point is finished before the worker exits.
    """
    db_path = get_database_path(args)

    repository = SQLiteJobRepository(db_path)
    processor = build_processor(args, repository)

    logger.info("Starting StoreHub build worker")
    logger.info(f"  Database: {db_path}")
    logger.info(f"  Scratch dir: {processor.scratch_dir}")
    logger.info(f"  Poll interval: {processor.poll_interval}s")
    logger.info(f"  Heartbeat interval: {processor.heartbeat_interval}s")

    await repository.initialize()
    logger.info("Database initialized")

    shutdown_event = asyncio.Event()

    def signal_handler(sig: Any, _frame: Any) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {sig}, initiating graceful shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        # Returns once shutdown_event is set and the in-flight job, if any, is done
        await processor.run(shutdown_event)

    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise
    finally:
        logger.info("Closing database connections...")
        await repository.close()
        logger.info("Worker stopped cleanly")


def main(argv: list[str] | None = None) -> int:
    """
    Main entrypoint for the worker.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        asyncio.run(run_worker(args))
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
