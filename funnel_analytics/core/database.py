# DB connections

from sqlalchemy import create_engine
from funnel_analytics.core.config import settings
import duckdb

# Monday; week 0 starts here
WEEK_EPOCH = "1970-01-05"

# Sync engine for the relational events table and CLI scripts
sync_engine = create_engine(
    settings.database_url,
    echo=settings.debug
)


def get_duckdb_connection(path: str | None = None):
    """Get DuckDB connection with the shared week_index macro installed"""
    conn = duckdb.connect(path or settings.duckdb_path)

    # Whole weeks since WEEK_EPOCH. Cohort weeks and activity weeks both go
    # through this macro so offsets always line up.
    conn.execute(f"""
        CREATE OR REPLACE MACRO week_index(ts) AS
            CAST(floor(date_diff('day', DATE '{WEEK_EPOCH}', CAST(ts AS DATE)) / 7.0) AS BIGINT)
    """)
    return conn
