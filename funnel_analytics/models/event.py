# SQLAlchemy models

from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Event(Base):
    __tablename__ = "events"

    # Autoincrement id doubles as insertion order (timestamp tiebreak)
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, nullable=False)
    event_name = Column(String(255), nullable=False)
    event_timestamp = Column(DateTime, nullable=False)
    platform = Column(String(50), nullable=True)

    __table_args__ = (
        # Ordered per-user scans
        Index('idx_user_timestamp', 'user_id', 'event_timestamp'),
        # Milestone filters
        Index('idx_event_name', 'event_name'),
    )
