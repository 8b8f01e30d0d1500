"""
Funnel Analytics report CLI

Usage:
    funnel-analytics report --csv events.csv --output-dir out/
    funnel-analytics funnel --database-url sqlite:///./events.db
    funnel-analytics active-users --csv events.csv --as-of 2023-02-01T00:00:00
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path

import structlog
from sqlalchemy import create_engine

from funnel_analytics.core.config import settings
from funnel_analytics.core.database import sync_engine
from funnel_analytics.services.analytics import AnalyticsService
from funnel_analytics.services.ingestion import EventSchemaError
from funnel_analytics.services import reporting


def stderr_logger_factory(*args):
    # Looked up per logger so a swapped sys.stderr is always honoured
    return structlog.PrintLogger(file=sys.stderr)


def configure_logging(level: str = settings.log_level):
    # Configure structured logging
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        logger_factory=stderr_logger_factory
    )


logger = structlog.get_logger()

COMMANDS = ("funnel", "retention", "active-users", "activation", "report")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="funnel-analytics", description=settings.app_name)
    parser.add_argument("command", choices=COMMANDS)
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--csv", type=str, help="events CSV (user_id,event_name,event_timestamp,platform)")
    source.add_argument("--database-url", type=str, default=None,
                        help=f"SQLAlchemy URL of the events table (default: {settings.database_url})")
    parser.add_argument("--milestones", type=str, default=None,
                        help="comma-separated funnel milestones")
    parser.add_argument("--no-segment", action="store_true", help="one funnel over all users")
    parser.add_argument("--weeks", type=int, default=None, help="retention weeks to report")
    parser.add_argument("--as-of", type=datetime.fromisoformat, default=None,
                        help="instant for DAU/WAU/MAU (default: midnight after the last event)")
    parser.add_argument("--output-dir", type=str, default=None, help="write one CSV per table here")
    parser.add_argument("--json", action="store_true", help="print JSON instead of tables")
    return parser


def open_service(args) -> AnalyticsService:
    if args.csv:
        return AnalyticsService.from_csv(args.csv)
    engine = create_engine(args.database_url) if args.database_url else sync_engine
    return AnalyticsService.from_table(engine)


def default_as_of(service: AnalyticsService) -> datetime:
    last = service.last_event_timestamp()
    if last is None:
        # Empty log: every window is empty whatever the instant
        return datetime(1970, 1, 1)
    return datetime.combine(last.date() + timedelta(days=1), datetime.min.time())


def collect_tables(service: AnalyticsService, args) -> dict:
    """Run the requested analyses; returns {name: (models, frame)}"""
    tables = {}
    wanted = COMMANDS[:-1] if args.command == "report" else (args.command,)

    if "funnel" in wanted:
        milestones = args.milestones.split(",") if args.milestones else None
        segment_by = None if args.no_segment else settings.segment_by
        segments = service.get_funnel(milestones, segment_by=segment_by)
        tables["funnel"] = (segments, reporting.funnel_frame(segments, segment_by))

    if "retention" in wanted:
        cohorts = service.get_retention(args.weeks)
        tables["retention"] = (cohorts, reporting.retention_frame(cohorts))

    if "active-users" in wanted:
        summary = service.get_active_users(args.as_of or default_as_of(service))
        tables["active_users"] = ([summary], reporting.active_users_frame(summary))

    if "activation" in wanted:
        stats = service.get_activation_times()
        tables["activation"] = ([stats], reporting.activation_frame(stats))

    return tables


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging()
    logger.info("application_startup", app_name=settings.app_name, command=args.command)

    try:
        service = open_service(args)
    except (FileNotFoundError, EventSchemaError) as e:
        logger.error("event_log_unreadable", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        tables = collect_tables(service, args)
        conflicts = service.get_segment_conflicts()
        summary = service.ingestion_summary
    finally:
        service.close()

    if args.json:
        payload = {name: [m.model_dump(mode="json") for m in models] for name, (models, _) in tables.items()}
        payload["data_quality"] = {
            "ingestion": summary.model_dump() if summary else None,
            "conflicting_segment_users": conflicts,
        }
        print(json.dumps(payload, indent=2))
    else:
        for name, (_, frame) in tables.items():
            print(f"\n{'=' * 60}\n{name.upper()}\n{'=' * 60}")
            print(frame.to_string(index=False) if not frame.empty else "(no rows)")

        print(f"\n{'=' * 60}")
        if summary:
            print(f"Rows loaded: {summary.loaded_rows} | Skipped: {summary.skipped_rows}")
            for field, count in sorted(summary.skipped_by_field.items()):
                print(f"  skipped on {field}: {count}")
        if conflicts:
            print(f"Users with conflicting platforms: {len(conflicts)} "
                  f"(policy: {settings.segment_conflict_policy})")

    if args.output_dir:
        out = Path(args.output_dir)
        out.mkdir(parents=True, exist_ok=True)
        for name, (_, frame) in tables.items():
            frame.to_csv(out / f"{name}.csv", index=False)
        logger.info("report_written", output_dir=str(out), tables=list(tables))

    logger.info("application_shutdown")
    return 0


if __name__ == "__main__":
    sys.exit(main())
