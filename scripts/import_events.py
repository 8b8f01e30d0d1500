"""
CSV Import Script for Events

Usage:
    python scripts/import_events.py <path-to-csv> [database-url]

CSV Format:
    user_id,event_name,event_timestamp,platform
"""

import sys
from pathlib import Path

# Add parent directory to path to import funnel_analytics modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import create_engine
from funnel_analytics.core.config import settings
from funnel_analytics.core.database import sync_engine
from funnel_analytics.services.ingestion import EventSchemaError, import_csv


def main():
    if len(sys.argv) not in (2, 3):
        print("Usage: python scripts/import_events.py <path-to-csv> [database-url]")
        sys.exit(1)

    file_path = sys.argv[1]

    print(f"Starting import from: {file_path}")
    engine = create_engine(sys.argv[2]) if len(sys.argv) == 3 else sync_engine

    try:
        summary = import_csv(file_path, engine, batch_size=settings.import_batch_size)
    except (FileNotFoundError, EventSchemaError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("\n" + "=" * 50)
    print("Import completed!")
    print(f"Total rows: {summary.total_rows}")
    print(f"Total inserted: {summary.loaded_rows}")
    print(f"Total skipped: {summary.skipped_rows}")
    for field, count in sorted(summary.skipped_by_field.items()):
        print(f"  invalid {field}: {count}")
    print("=" * 50)


if __name__ == "__main__":
    main()
