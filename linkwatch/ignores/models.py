import enum

from sqlalchemy import Column, Integer, Text, Boolean, ForeignKey, DateTime

from linkwatch.core.timeutil import utcnow
from linkwatch.db.base import Base, enum_column_type


class IgnoreRuleType(str, enum.Enum):
    CONTAINS = "contains"
    EXACT = "exact"
    REGEX = "regex"
    STATUS_CODE = "status_code"
    CLASSIFICATION = "classification"
    DOMAIN = "domain"
    PATH_PREFIX = "path_prefix"


class IgnoreRule(Base):
    __tablename__ = "ignore_rules"

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), index=True, nullable=True)  # NULL = global

    rule_type = Column(enum_column_type(IgnoreRuleType), nullable=False)
    pattern = Column(Text, nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
