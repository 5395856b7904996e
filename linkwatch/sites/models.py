import enum

from sqlalchemy import Column, Integer, String, Boolean, DateTime

from linkwatch.core.timeutil import utcnow
from linkwatch.db.base import Base, enum_column_type


class ScheduleFrequency(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class Site(Base):
    __tablename__ = "sites"

    id = Column(Integer, primary_key=True)

    url = Column(String, nullable=False)
    domain = Column(String, index=True, nullable=False)

    schedule_enabled = Column(Boolean, nullable=False, default=False)
    schedule_frequency = Column(enum_column_type(ScheduleFrequency), nullable=False, default=ScheduleFrequency.DAILY)
    schedule_time_utc = Column(String(5), nullable=False, default="02:00")  # HH:MM
    schedule_day_of_week = Column(Integer, nullable=True)  # 0=Sunday .. 6=Saturday, weekly only
    next_scheduled_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_scheduled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
