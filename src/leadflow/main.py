#!/usr/bin/env python3
"""CLI entry point for the lead pipeline.

One-shot commands enqueue their job, wait for it and for every job it
emitted, then exit. ``worker`` recovers unfinished jobs, starts the cron
scheduler and serves the queue until interrupted.

Usage:
    leadflow init-db
    leadflow generate-queries --company 7f3c...
    leadflow --verbose run-query 1b2d...
    leadflow confirm-routing 9a8e...
    leadflow --json-logs worker

Example:
    # Check which collaborators are configured
    leadflow check-env

    # Run today's discovery cycle once, with debug output
    leadflow --debug run-discovery
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Any, Optional

from .config import ConfigError, config
from .errors import PipelineError
from .jobs import graph
from .logging_utils import setup_logging
from .models import DatabaseManager, JobRecord, JobStatus
from .scheduler import create_scheduler
from .services import Services, build_services

REQUIRED_VARS = [
    "DATABASE_URL",
    "OPENAI_API_KEY",
    "EXA_API_KEY",
    "INSTANTLY_API_KEY",
]
OPTIONAL_VARS = [
    "INSTANTLY_SENDER_EMAIL",
    "SENDGRID_API_KEY",
    "SENDGRID_FROM_EMAIL",
    "DIGEST_RECIPIENTS",
    "APP_URL",
]


def check_environment() -> dict[str, bool]:
    """Check required and optional environment variables.

    Returns:
        Dictionary mapping env var names to their availability.
    """
    return {var: bool(os.environ.get(var)) for var in REQUIRED_VARS + OPTIONAL_VARS}


def print_env_status(status: dict[str, bool], verbose: bool = False) -> bool:
    """Print environment variable status.

    Returns:
        True when every required variable is set.
    """
    print("\nEnvironment Status:")
    print("-" * 40)

    missing_required = []
    for var in REQUIRED_VARS:
        symbol = "✓" if status.get(var) else "✗"
        print(f"  [{symbol}] {var} (required)")
        if not status.get(var):
            missing_required.append(var)

    if verbose:
        print()
        for var in OPTIONAL_VARS:
            symbol = "✓" if status.get(var) else "-"
            print(f"  [{symbol}] {var} (optional)")

    print("-" * 40)

    if missing_required:
        print(f"\nError: Missing required environment variables: {', '.join(missing_required)}")
        return False
    return True


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def print_job(record: Optional[JobRecord]) -> None:
    """Print a job's outcome."""
    if record is None:
        print("Job not found")
        return
    symbol = "✓" if record.status == JobStatus.SUCCEEDED else "✗"
    print(f"\n[{symbol}] {record.name} ({record.id}): {record.status.value}")
    print(f"    Attempts: {record.attempts}")
    if record.last_error:
        print(f"    Error: {record.last_error[:300]}")
    if record.result:
        print_json(record.result)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="leadflow",
        description="Cold-outbound lead discovery, enrichment and campaign routing",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    output = parser.add_argument_group("output options")
    output.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    output.add_argument("--debug", action="store_true", help="Enable debug output")
    output.add_argument(
        "--json-logs", action="store_true", help="Emit structured JSON log lines"
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    commands.add_parser("init-db", help="Create database tables")
    commands.add_parser("check-env", help="Check environment variables and exit")

    generate = commands.add_parser("generate-queries", help="Generate discovery queries")
    generate.add_argument("--company", help="Only this company id")

    commands.add_parser(
        "run-discovery", help="Run the newest pending query of every company"
    )

    run_query = commands.add_parser("run-query", help="Run one query, whatever its status")
    run_query.add_argument("query_id")

    enrich = commands.add_parser("enrich-lead", help="Enrich and route one lead")
    enrich.add_argument("lead_id")

    re_enrich = commands.add_parser("re-enrich", help="Reset a lead and enrich it again")
    re_enrich.add_argument("lead_id")

    confirm = commands.add_parser(
        "confirm-routing", help="Attach a lead to its suggested campaign"
    )
    confirm.add_argument("lead_id")
    confirm.add_argument("--campaign", help="Campaign id overriding the suggestion")

    suggest = commands.add_parser(
        "suggest-campaign", help="Suggest a campaign for a lead without attaching it"
    )
    suggest.add_argument("lead_id")

    skip = commands.add_parser("skip-lead", help="Skip a lead")
    skip.add_argument("lead_id")
    skip.add_argument("--reason", default="Manually skipped", help="Skip reason")

    unskip = commands.add_parser("unskip-lead", help="Return a skipped lead to pending")
    unskip.add_argument("lead_id")

    pause = commands.add_parser("pause-campaign", help="Pause a campaign")
    pause.add_argument("campaign_id")

    commands.add_parser("sync-analytics", help="Pull campaign analytics now")
    commands.add_parser("send-digest", help="Send today's digest now")
    commands.add_parser("list-accounts", help="List outbound sending identities")
    commands.add_parser("worker", help="Run the scheduler and job queue until interrupted")

    return parser


async def run_worker(services: Services, logger: logging.Logger) -> None:
    """Recover unfinished jobs, start the scheduler and wait for a signal."""
    queue = services.queue
    recovered = await queue.recover()
    scheduler = create_scheduler(queue, services.settings.SCHEDULER_TIMEZONE)
    scheduler.start()
    logger.info(
        "Worker started",
        extra={"recovered_jobs": recovered, "jobs": queue.job_names},
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Signal handlers are unavailable on Windows event loops
            pass

    try:
        await stop.wait()
    finally:
        scheduler.shutdown(wait=False)
        logger.info("Worker stopping, draining running jobs")
        await queue.drain()


async def dispatch(args: argparse.Namespace, services: Services, logger: logging.Logger) -> None:
    queue = services.queue
    actions = services.actions

    if args.command == "generate-queries":
        payload = {"company_id": args.company} if args.company else {}
        print_job(await queue.run(graph.QUERIES_GENERATE, payload))
    elif args.command == "run-discovery":
        print_job(await queue.run(graph.DISCOVERY_SCHEDULE, {}))
    elif args.command == "run-query":
        job_id = await actions.run_query(args.query_id)
        await queue.drain()
        print_job(await queue.journal.get(job_id))
    elif args.command == "enrich-lead":
        print_job(await queue.run(graph.LEAD_ENRICH, {"lead_id": args.lead_id}))
    elif args.command == "re-enrich":
        job_id = await actions.re_enrich_lead(args.lead_id)
        await queue.drain()
        print_job(await queue.journal.get(job_id))
    elif args.command == "confirm-routing":
        job_id = await actions.request_confirm_routing(args.lead_id, args.campaign)
        await queue.drain()
        print_job(await queue.journal.get(job_id))
    elif args.command == "suggest-campaign":
        print_json(await actions.suggest_campaign(args.lead_id))
    elif args.command == "skip-lead":
        await actions.skip_lead(args.lead_id, args.reason)
        print(f"Lead {args.lead_id} skipped")
    elif args.command == "unskip-lead":
        lead = await actions.unskip_lead(args.lead_id)
        print_json(lead.to_dict())
    elif args.command == "pause-campaign":
        await actions.pause_campaign(args.campaign_id)
        print(f"Campaign {args.campaign_id} paused")
    elif args.command == "sync-analytics":
        print_job(await queue.run(graph.ANALYTICS_SYNC, {}))
    elif args.command == "send-digest":
        print_job(await queue.run(graph.DIGEST_SEND, {}))
    elif args.command == "list-accounts":
        print_json(await actions.list_sending_identities())
    elif args.command == "worker":
        await run_worker(services, logger)
    else:
        raise ValueError(f"Unknown command {args.command!r}")


async def run_command(args: argparse.Namespace, logger: logging.Logger) -> int:
    """Run one CLI command against the configured database.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        config.validate_for_database()
    except ConfigError as e:
        print(f"Error: {e}")
        return 1

    try:
        if args.command == "init-db":
            await DatabaseManager.create_tables()
            print("Database tables created")
            return 0

        session_factory = await DatabaseManager.get_session_factory()
        services = build_services(session_factory, settings=config)
        await dispatch(args, services, logger)
    except (PipelineError, ConfigError) as e:
        logger.debug("Command refused", exc_info=True)
        print(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nCancelled by user.")
        return 130
    finally:
        await DatabaseManager.close()

    if services.queue.failed_jobs:
        print(f"\n{len(services.queue.failed_jobs)} job(s) failed")
        return 1
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    level = "WARNING"
    if args.debug:
        level = "DEBUG"
    elif args.verbose:
        level = "INFO"
    logger = setup_logging(level=level, structured=args.json_logs, service_name="leadflow")

    if args.command == "check-env":
        status = check_environment()
        return 0 if print_env_status(status, verbose=True) else 1

    return asyncio.run(run_command(args, logger))


if __name__ == "__main__":
    sys.exit(main())
