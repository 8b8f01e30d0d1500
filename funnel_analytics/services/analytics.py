from datetime import date, datetime, timedelta
from typing import List, Optional

import pandas as pd
from funnel_analytics.core.config import settings
from funnel_analytics.core.database import WEEK_EPOCH, get_duckdb_connection
from funnel_analytics.schemas.analytics import (
    ActivationTimeStats,
    ActiveUsersResponse,
    CohortRetention,
    DAUResponse,
    FunnelSegment,
    FunnelStep,
    RetentionWindow,
)
from funnel_analytics.schemas.event import to_naive_utc
from funnel_analytics.services import ingestion
from funnel_analytics.services.stats import mean, percentile
import structlog

logger = structlog.get_logger()

ACTIVE_USER_WINDOWS = {
    "dau": timedelta(days=1),
    "wau": timedelta(days=7),
    "mau": timedelta(days=30),
}

SEGMENT_COLUMNS = ("platform",)
UNSEGMENTED = "all"


def _pct(numerator: int, denominator: int) -> Optional[float]:
    """Percentage on a 0-100 scale, None when the denominator is empty"""
    if not denominator:
        return None
    return round(numerator * 100.0 / denominator, 2)


def _round(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(value, 2)


class AnalyticsService:
    """Service for analytics queries over a read-only event log, using DuckDB"""

    def __init__(self, events: pd.DataFrame, conn=None, segment_conflict_policy: Optional[str] = None):
        self.segment_conflict_policy = segment_conflict_policy or settings.segment_conflict_policy
        if self.segment_conflict_policy not in ("flag", "exclude"):
            raise ValueError(f"Unknown segment conflict policy: {self.segment_conflict_policy}")

        # Malformed rows are skipped and counted here, whatever the source
        events, self.ingestion_summary = ingestion.events_from_frame(events)

        self.duckdb_conn = conn or get_duckdb_connection()
        self._load_events(events)

    @classmethod
    def from_csv(cls, file_path, **kwargs):
        frame, summary = ingestion.load_events_csv(file_path)
        service = cls(frame, **kwargs)
        service.ingestion_summary = summary
        return service

    @classmethod
    def from_table(cls, engine, **kwargs):
        frame, summary = ingestion.load_events_table(engine)
        service = cls(frame, **kwargs)
        service.ingestion_summary = summary
        return service

    def _load_events(self, events: pd.DataFrame):
        """Copy the validated event log into DuckDB with the recommended indexes"""
        conn = self.duckdb_conn
        conn.register("events_source", events)
        try:
            conn.execute("DROP VIEW IF EXISTS segment_conflicts")
            conn.execute("DROP INDEX IF EXISTS idx_user_timestamp")
            conn.execute("DROP INDEX IF EXISTS idx_event_name")
            conn.execute("DROP TABLE IF EXISTS events")
            conn.execute("""
                CREATE TABLE events AS
                SELECT
                    CAST(event_seq AS BIGINT) AS event_seq,
                    CAST(user_id AS BIGINT) AS user_id,
                    CAST(event_name AS VARCHAR) AS event_name,
                    CAST(event_timestamp AS TIMESTAMP) AS event_timestamp,
                    CAST(platform AS VARCHAR) AS platform
                FROM events_source
            """)
        finally:
            conn.unregister("events_source")

        conn.execute("CREATE INDEX idx_user_timestamp ON events (user_id, event_timestamp)")
        conn.execute("CREATE INDEX idx_event_name ON events (event_name)")
        conn.execute("""
            CREATE VIEW segment_conflicts AS
            SELECT user_id
            FROM events
            WHERE platform IS NOT NULL
            GROUP BY user_id
            HAVING COUNT(DISTINCT platform) > 1
        """)

        self.row_count = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
        logger.info("events_table_ready", rows=self.row_count)

    def last_event_timestamp(self) -> Optional[datetime]:
        return self.duckdb_conn.execute("SELECT MAX(event_timestamp) FROM events").fetchone()[0]

    # ------------------------------------------------------------------
    # Funnel
    # ------------------------------------------------------------------

    def get_funnel(
            self,
            milestones: Optional[List[str]] = None,
            segment_by: Optional[str] = "platform"
    ) -> List[FunnelSegment]:
        """
        Sequenced funnel per segment.

        users_at_stage counts users who ever fired a milestone. Transitions use
        a one-step look-ahead over each user's ordered events: a user makes
        step i when some m_i event is immediately followed by m_(i+1). Average
        time is taken from each user's first such adjacency.
        """
        milestones = list(settings.funnel_milestones if milestones is None else milestones)
        if not milestones:
            raise ValueError("At least one milestone is required")
        if len(set(milestones)) != len(milestones):
            raise ValueError(f"Milestones must be unique: {milestones}")
        if segment_by is not None and segment_by not in SEGMENT_COLUMNS:
            raise ValueError(f"Cannot segment by '{segment_by}'; choose from {SEGMENT_COLUMNS}")

        try:
            self._prepare_funnel(milestones, segment_by)
            segments = self.duckdb_conn.execute("""
                SELECT segment, COUNT(*) AS users
                FROM funnel_user_segments
                GROUP BY segment
                ORDER BY segment NULLS LAST
            """).fetchall()
            reached = self._funnel_reached()
            transitions = self._funnel_transitions()
        except Exception as e:
            logger.error("funnel_query_failed", error=str(e))
            raise

        result = []
        for segment, total_users in segments:
            users_at_stage = [reached.get((segment, i), 0) for i in range(len(milestones))]
            steps = []
            previous = users_at_stage[0]
            for i in range(len(milestones) - 1):
                transition_users, avg_ms = transitions.get((segment, i), (0, None))
                steps.append(FunnelStep(
                    from_event=milestones[i],
                    to_event=milestones[i + 1],
                    transition_users=transition_users,
                    conversion_rate=_pct(users_at_stage[i + 1], users_at_stage[i]),
                    strict_conversion_rate=_pct(transition_users, previous),
                    avg_time_seconds=_round(None if avg_ms is None else avg_ms / 1000.0)
                ))
                previous = transition_users

            result.append(FunnelSegment(
                segment=segment,
                total_users=total_users,
                milestones=milestones,
                users_at_stage=users_at_stage,
                steps=steps
            ))

        logger.info(
            "funnel_query_duckdb",
            milestones=milestones,
            segment_by=segment_by,
            segments=len(result)
        )
        return result

    def _prepare_funnel(self, milestones: List[str], segment_by: Optional[str]):
        """Stage the milestone list and the per-user segment assignment"""
        conn = self.duckdb_conn
        conn.register("funnel_milestones_input", pd.DataFrame({
            "stage": list(range(len(milestones))),
            "event_name": milestones,
        }))
        try:
            conn.execute("""
                CREATE OR REPLACE TEMP TABLE funnel_milestones AS
                SELECT CAST(stage AS INTEGER) AS stage, CAST(event_name AS VARCHAR) AS event_name
                FROM funnel_milestones_input
            """)
        finally:
            conn.unregister("funnel_milestones_input")

        segment_expr = "e.platform" if segment_by else f"'{UNSEGMENTED}'"
        exclusion = ""
        if self.segment_conflict_policy == "exclude":
            exclusion = "WHERE e.user_id NOT IN (SELECT user_id FROM segment_conflicts)"

        # Segment = platform of the user's earliest first-milestone event,
        # else of the user's earliest event
        conn.execute(f"""
            CREATE OR REPLACE TEMP TABLE funnel_user_segments AS
            WITH ranked AS (
                SELECT
                    e.user_id,
                    {segment_expr} AS segment,
                    ROW_NUMBER() OVER (
                        PARTITION BY e.user_id
                        ORDER BY CASE WHEN m.stage IS NULL THEN 1 ELSE 0 END,
                                 e.event_timestamp,
                                 e.event_seq
                    ) AS rn
                FROM events e
                LEFT JOIN funnel_milestones m ON m.stage = 0 AND m.event_name = e.event_name
                {exclusion}
            )
            SELECT user_id, segment
            FROM ranked
            WHERE rn = 1
        """)

    def _funnel_reached(self) -> dict:
        rows = self.duckdb_conn.execute("""
            SELECT us.segment, m.stage, COUNT(DISTINCT e.user_id) AS users
            FROM events e
            JOIN funnel_milestones m ON m.event_name = e.event_name
            JOIN funnel_user_segments us ON us.user_id = e.user_id
            GROUP BY us.segment, m.stage
        """).fetchall()
        return {(segment, stage): users for segment, stage, users in rows}

    def _funnel_transitions(self) -> dict:
        rows = self.duckdb_conn.execute("""
            WITH sequenced AS (
                SELECT
                    user_id,
                    event_seq,
                    event_name,
                    event_timestamp,
                    LEAD(event_name, 1) OVER (
                        PARTITION BY user_id ORDER BY event_timestamp, event_seq
                    ) AS next_event_name,
                    LEAD(event_timestamp, 1) OVER (
                        PARTITION BY user_id ORDER BY event_timestamp, event_seq
                    ) AS next_event_timestamp
                FROM events
            ),
            transitions AS (
                SELECT a.stage, a.event_name AS from_event, b.event_name AS to_event
                FROM funnel_milestones a
                JOIN funnel_milestones b ON b.stage = a.stage + 1
            ),
            matched AS (
                SELECT
                    s.user_id,
                    t.stage,
                    epoch_ms(s.next_event_timestamp) - epoch_ms(s.event_timestamp) AS elapsed_ms,
                    ROW_NUMBER() OVER (
                        PARTITION BY s.user_id, t.stage ORDER BY s.event_timestamp, s.event_seq
                    ) AS occurrence
                FROM sequenced s
                JOIN transitions t
                  ON s.event_name = t.from_event AND s.next_event_name = t.to_event
            )
            SELECT us.segment, m.stage, COUNT(*) AS users, AVG(m.elapsed_ms) AS avg_ms
            FROM matched m
            JOIN funnel_user_segments us ON us.user_id = m.user_id
            WHERE m.occurrence = 1
            GROUP BY us.segment, m.stage
        """).fetchall()
        return {(segment, stage): (users, avg_ms) for segment, stage, users, avg_ms in rows}

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def get_retention(
            self,
            weeks: Optional[int] = None,
            cohort_event: Optional[str] = None
    ) -> List[CohortRetention]:
        """Weekly cohort retention, cohort = week of the user's first cohort_event"""
        weeks = settings.retention_weeks if weeks is None else weeks
        cohort_event = cohort_event or settings.cohort_event
        if weeks < 1:
            raise ValueError("weeks must be at least 1")

        cohorts_cte = """
            WITH cohorts AS (
                SELECT user_id, week_index(MIN(event_timestamp)) AS cohort_week
                FROM events
                WHERE event_name = ?
                GROUP BY user_id
            )
        """

        try:
            sizes = self.duckdb_conn.execute(cohorts_cte + """
                SELECT cohort_week, COUNT(*) AS cohort_size
                FROM cohorts
                GROUP BY cohort_week
                ORDER BY cohort_week
            """, [cohort_event]).fetchall()

            activity = self.duckdb_conn.execute(cohorts_cte + """
                , activity AS (
                    SELECT DISTINCT
                        c.cohort_week,
                        e.user_id,
                        week_index(e.event_timestamp) - c.cohort_week AS week_offset
                    FROM events e
                    JOIN cohorts c ON c.user_id = e.user_id
                )
                SELECT cohort_week, week_offset, COUNT(*) AS active_users
                FROM activity
                WHERE week_offset BETWEEN 0 AND ?
                GROUP BY cohort_week, week_offset
            """, [cohort_event, weeks - 1]).fetchall()
        except Exception as e:
            logger.error("retention_query_failed", error=str(e))
            raise

        active = {(cohort_week, offset): users for cohort_week, offset, users in activity}
        epoch = date.fromisoformat(WEEK_EPOCH)

        result = []
        for cohort_week, cohort_size in sizes:
            retention = []
            for week in range(weeks):
                retained_users = active.get((cohort_week, week), 0)
                retention.append(RetentionWindow(
                    week=week,
                    retained_users=retained_users,
                    retention_rate=_pct(retained_users, cohort_size)
                ))

            result.append(CohortRetention(
                cohort_week=cohort_week,
                cohort_start_date=str(epoch + timedelta(weeks=cohort_week)),
                cohort_size=cohort_size,
                retention=retention
            ))

        logger.info("retention_query_duckdb", cohort_event=cohort_event, weeks=weeks, cohorts=len(result))
        return result

    # ------------------------------------------------------------------
    # Active users
    # ------------------------------------------------------------------

    def get_active_users(self, as_of: datetime) -> ActiveUsersResponse:
        """DAU / WAU / MAU over the windows ending (exclusive) at as_of"""
        as_of = to_naive_utc(as_of)
        counts = {}
        for name, window in ACTIVE_USER_WINDOWS.items():
            counts[name] = self.duckdb_conn.execute("""
                SELECT COUNT(DISTINCT user_id)
                FROM events
                WHERE event_timestamp >= ? AND event_timestamp < ?
            """, [as_of - window, as_of]).fetchone()[0]

        if not counts["mau"]:
            logger.warning("stickiness_undefined", as_of=str(as_of))

        logger.info("active_users_query_duckdb", as_of=str(as_of), **counts)
        return ActiveUsersResponse(
            as_of=as_of,
            dau=counts["dau"],
            wau=counts["wau"],
            mau=counts["mau"],
            stickiness_pct=_pct(counts["dau"], counts["mau"])
        )

    def get_dau(self, from_date: date, to_date: date) -> List[DAUResponse]:
        """Get Daily Active Users (DAU) - unique users per day"""
        if from_date > to_date:
            raise ValueError("'from' date must be before or equal to 'to' date")

        rows = self.duckdb_conn.execute("""
            SELECT
                CAST(event_timestamp AS DATE) AS date,
                COUNT(DISTINCT user_id) AS unique_users
            FROM events
            WHERE event_timestamp >= ? AND event_timestamp < ?
            GROUP BY CAST(event_timestamp AS DATE)
            ORDER BY date
        """, [
            datetime.combine(from_date, datetime.min.time()),
            datetime.combine(to_date + timedelta(days=1), datetime.min.time())
        ]).fetchall()

        logger.info("dau_query_duckdb", from_date=str(from_date), to_date=str(to_date))
        return [DAUResponse(date=str(row[0]), unique_users=row[1]) for row in rows]

    # ------------------------------------------------------------------
    # Activation time
    # ------------------------------------------------------------------

    def get_activation_times(
            self,
            install_event: Optional[str] = None,
            activation_event: Optional[str] = None
    ) -> ActivationTimeStats:
        """Time from first install to first activation, for users activating after install"""
        install_event = install_event or settings.cohort_event
        activation_event = activation_event or settings.activation_event

        rows = self.duckdb_conn.execute("""
            WITH install_times AS (
                SELECT user_id, MIN(event_timestamp) AS install_time
                FROM events
                WHERE event_name = ?
                GROUP BY user_id
            ),
            activation_times AS (
                SELECT user_id, MIN(event_timestamp) AS activation_time
                FROM events
                WHERE event_name = ?
                GROUP BY user_id
            )
            SELECT epoch_ms(a.activation_time) - epoch_ms(i.install_time) AS activation_ms
            FROM install_times i
            JOIN activation_times a ON i.user_id = a.user_id
            WHERE a.activation_time > i.install_time
        """, [install_event, activation_event]).fetchall()

        seconds = [row[0] / 1000.0 for row in rows]

        logger.info("activation_time_query_duckdb", users=len(seconds))
        return ActivationTimeStats(
            install_event=install_event,
            activation_event=activation_event,
            users=len(seconds),
            mean_seconds=_round(mean(seconds)),
            median_seconds=_round(percentile(seconds, 50)),
            p75_seconds=_round(percentile(seconds, 75)),
            p90_seconds=_round(percentile(seconds, 90))
        )

    # ------------------------------------------------------------------
    # Data quality
    # ------------------------------------------------------------------

    def get_segment_conflicts(self) -> List[int]:
        """Users seen under more than one platform"""
        user_ids = [
            row[0] for row in
            self.duckdb_conn.execute("SELECT user_id FROM segment_conflicts ORDER BY user_id").fetchall()
        ]
        if user_ids:
            logger.warning(
                "segment_conflicts_detected",
                users=len(user_ids),
                policy=self.segment_conflict_policy,
                sample=user_ids[:10]
            )
        return user_ids

    def close(self):
        """Close DuckDB connection"""
        if self.duckdb_conn:
            self.duckdb_conn.close()
            self.duckdb_conn = None
