#!/usr/bin/env python3
"""
Archive Athena query execution history to S3.

Usage:
    athena-history-archive --history-base-uri s3://athena-query-history/history/ \\
        --state-uri s3://athena-query-history/state.json
    athena-history-archive --config config/history_archive.yaml

Also deployable as an AWS Lambda function with handler
``athena_history.cli.lambda_handler``, configured through HISTORY_BASE_URI
and STATE_URI.
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Any

import boto3
from rich.console import Console
from rich.table import Table

from athena_history.config import HarvestSettings, load_settings
from athena_history.harvester import ERR_NO_HISTORY_URI, ConfigurationError, HistoryHarvester
from athena_history.regions import BucketRegionResolver
from athena_history.retry import RetryPolicy

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

console = Console()


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
    for noisy in ("boto3", "botocore", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def build_harvester(settings: HarvestSettings, *, athena_client: Any = None) -> HistoryHarvester:
    return HistoryHarvester(
        athena_client or boto3.client("athena"),
        BucketRegionResolver(),
        settings.history_base_uri,
        state_uri=settings.state_uri,
        flush_size=settings.flush_size,
        retry_policy=RetryPolicy(max_attempts=settings.max_retry_attempts),
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Incrementally archive Athena query execution history to S3.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", type=Path, default=None, help="Optional YAML config file")
    parser.add_argument("--history-base-uri", default=None, help="s3://bucket/prefix/ to write archives under")
    parser.add_argument("--state-uri", default=None, help="s3://bucket/key.json holding the resume checkpoint")
    parser.add_argument("--flush-size", type=int, default=None, help="Records per archive object (default 10000)")
    parser.add_argument(
        "--max-retry-attempts",
        type=int,
        default=None,
        help="Give up on a throttled call after this many attempts (default: retry forever)",
    )
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ... (default INFO)")
    return parser.parse_args(argv)


def print_summary(boundaries: dict[str, str]) -> None:
    if not boundaries:
        console.print("[yellow]No new query executions to archive.[/yellow]")
        return

    table = Table(title="Archived Query History")
    table.add_column("Work group", style="cyan")
    table.add_column("New last query execution ID", style="magenta")
    for work_group, query_execution_id in boundaries.items():
        table.add_row(work_group, query_execution_id)
    console.print(table)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point; returns a process exit code."""
    args = _parse_args(argv)

    try:
        settings = load_settings(
            args.config,
            overrides={
                "history_base_uri": args.history_base_uri,
                "state_uri": args.state_uri,
                "flush_size": args.flush_size,
                "log_level": args.log_level,
                "max_retry_attempts": args.max_retry_attempts,
            },
        )
    except (FileNotFoundError, ValueError) as e:
        configure_logging("INFO")
        logger.error("Invalid configuration: %s", e)
        return 2

    configure_logging(settings.log_level)
    if not settings.history_base_uri:
        logger.error("Invalid configuration: %s", ERR_NO_HISTORY_URI)
        return 2

    logger.info("History base URI: %s", settings.history_base_uri)
    logger.info("State URI: %s", settings.state_uri or "(none, checkpointing disabled)")

    try:
        boundaries = build_harvester(settings).run()
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    except Exception as e:
        logger.error("History archive run failed: %s", e, exc_info=True)
        return 1

    print_summary(boundaries)
    return 0


def lambda_handler(event: Any, context: Any) -> dict[str, str]:
    """AWS Lambda entry point: configuration comes from the environment."""
    settings = load_settings(overrides={"log_level": os.environ.get("LOG_LEVEL") or "DEBUG"})
    configure_logging(settings.log_level)
    if not settings.history_base_uri:
        raise ConfigurationError(ERR_NO_HISTORY_URI)
    return build_harvester(settings).run()


if __name__ == "__main__":
    raise SystemExit(main())
