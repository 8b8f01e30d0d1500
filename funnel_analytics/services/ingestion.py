import csv
from pathlib import Path
from typing import Iterable, Any

import pandas as pd
from pydantic import ValidationError
from sqlalchemy import inspect, insert, select
from sqlalchemy.orm import sessionmaker
from funnel_analytics.models.event import Base, Event
from funnel_analytics.schemas.event import EventRecord, IngestionSummary
import structlog

logger = structlog.get_logger()

EVENT_COLUMNS = ["user_id", "event_name", "event_timestamp", "platform"]
REQUIRED_COLUMNS = {"user_id", "event_name", "event_timestamp"}


class EventSchemaError(ValueError):
    """The input as a whole cannot be read as an event log"""


def _collect(rows: Iterable[dict[str, Any]], source: str) -> tuple[pd.DataFrame, IngestionSummary]:
    """
    Validate raw rows and build the events frame.

    Malformed rows are skipped and counted per offending field; they never
    fail the load.
    """
    summary = IngestionSummary(source=source)
    records = []

    for i, row in enumerate(rows, 1):
        summary.total_rows += 1
        try:
            records.append(EventRecord.model_validate(row).model_dump())
        except ValidationError as e:
            summary.skipped_rows += 1
            field = str(e.errors()[0]["loc"][0]) if e.errors()[0]["loc"] else "row"
            summary.skipped_by_field[field] = summary.skipped_by_field.get(field, 0) + 1
            logger.warning("event_row_skipped", source=source, row=i, field=field,
                           error=e.errors()[0]["msg"])

    summary.loaded_rows = len(records)

    frame = pd.DataFrame.from_records(records, columns=EVENT_COLUMNS)
    # Insertion order, used as the tiebreak for equal timestamps
    frame["event_seq"] = range(len(frame))

    logger.info(
        "events_loaded",
        source=source,
        total=summary.total_rows,
        loaded=summary.loaded_rows,
        skipped=summary.skipped_rows
    )
    return frame, summary


def load_events_csv(file_path) -> tuple[pd.DataFrame, IngestionSummary]:
    """
    Load events from a CSV file

    CSV Format:
        user_id,event_name,event_timestamp,platform

    Raises:
        FileNotFoundError: the file does not exist
        EventSchemaError: required columns are missing
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Events file not found: {file_path}")

    with open(file_path, 'r', encoding='utf-8', newline='') as f:
        reader = csv.DictReader(f)
        headers = set(reader.fieldnames or [])

        if not REQUIRED_COLUMNS.issubset(headers):
            missing = sorted(REQUIRED_COLUMNS - headers)
            raise EventSchemaError(
                f"{file_path}: missing required columns {missing}; "
                f"found {sorted(headers)}"
            )

        return _collect(reader, source=str(file_path))


def events_from_frame(df: pd.DataFrame, source: str = "dataframe") -> tuple[pd.DataFrame, IngestionSummary]:
    """Validate an in-memory table with the event columns"""
    missing = sorted(REQUIRED_COLUMNS - set(df.columns))
    if missing:
        raise EventSchemaError(f"{source}: missing required columns {missing}")

    columns = [c for c in EVENT_COLUMNS if c in df.columns]
    # NaN / NaT -> None so the validators see real missing values
    clean = df[columns].astype(object).where(df[columns].notna(), None)
    return _collect(clean.to_dict("records"), source=source)


def load_events_table(engine) -> tuple[pd.DataFrame, IngestionSummary]:
    """Load events from the relational events table, in insertion order"""
    if not inspect(engine).has_table(Event.__tablename__):
        raise EventSchemaError(
            f"Table '{Event.__tablename__}' not found at {engine.url.render_as_string(hide_password=True)}"
        )

    stmt = select(
        Event.user_id,
        Event.event_name,
        Event.event_timestamp,
        Event.platform
    ).order_by(Event.id)

    with engine.connect() as conn:
        rows = [dict(row._mapping) for row in conn.execute(stmt)]

    return _collect(rows, source=f"table:{Event.__tablename__}")


def import_csv(file_path, engine, batch_size: int = 1000) -> IngestionSummary:
    """
    Import events from CSV file into the relational events table

    Args:
        file_path: Path to CSV file
        engine: SQLAlchemy engine; the table and its indexes are created if missing
        batch_size: Number of events to insert per batch
    """
    frame, summary = load_events_csv(file_path)

    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)

    records = [
        {
            "user_id": int(row.user_id),
            "event_name": row.event_name,
            "event_timestamp": pd.Timestamp(row.event_timestamp).to_pydatetime(),
            "platform": row.platform if isinstance(row.platform, str) else None
        }
        for row in frame.itertuples(index=False)
    ]
    total_inserted = 0

    with Session() as session:
        for start in range(0, len(records), batch_size):
            batch = records[start:start + batch_size]
            session.execute(insert(Event), batch)
            session.commit()

            total_inserted += len(batch)
            logger.info("events_imported", processed=total_inserted, total=len(records))

    return summary
