from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import declared_attr, relationship

from linkwatch.core.timeutil import utcnow
from linkwatch.db.base import Base, enum_column_type
from linkwatch.scans.enums import ScanRunStatus, JobStatus, LinkClassification, IgnoredSource


class ScanRun(Base):
    __tablename__ = "scan_runs"

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), index=True, nullable=False)

    status = Column(enum_column_type(ScanRunStatus), nullable=False, default=ScanRunStatus.QUEUED, index=True)
    start_url = Column(String, nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)  # set iff status is terminal

    total_links = Column(Integer, nullable=False, default=0)
    checked_links = Column(Integer, nullable=False, default=0)
    broken_links = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ScanJob(Base):
    __tablename__ = "scan_jobs"

    id = Column(Integer, primary_key=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), index=True, nullable=False)
    scan_run_id = Column(Integer, ForeignKey("scan_runs.id", ondelete="SET NULL"), index=True, nullable=True)

    status = Column(enum_column_type(JobStatus), nullable=False, default=JobStatus.QUEUED, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)

    worker_id = Column(String, nullable=True)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    run_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class LinkRecordMixin:
    """Columns shared by the active (scan_links) and ignored (scan_ignored_links) buckets."""

    id = Column(Integer, primary_key=True)
    link_url = Column(Text, nullable=False)

    classification = Column(enum_column_type(LinkClassification), nullable=False, index=True)
    status_code = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)

    occurrence_count = Column(Integer, nullable=False, default=1)
    first_seen_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_seen_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    ignored = Column(Boolean, nullable=False, default=False)
    ignored_source = Column(enum_column_type(IgnoredSource), nullable=False, default=IgnoredSource.NONE)
    ignored_at = Column(DateTime(timezone=True), nullable=True)
    ignore_reason = Column(Text, nullable=True)

    @declared_attr
    def scan_run_id(cls):
        return Column(Integer, ForeignKey("scan_runs.id", ondelete="CASCADE"), index=True, nullable=False)

    @declared_attr
    def ignored_by_rule_id(cls):
        return Column(Integer, ForeignKey("ignore_rules.id", ondelete="SET NULL"), nullable=True)


class OccurrenceMixin:
    id = Column(Integer, primary_key=True)
    source_page = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class ScanLink(LinkRecordMixin, Base):
    __tablename__ = "scan_links"
    __table_args__ = (UniqueConstraint("scan_run_id", "link_url", name="uq_scan_links_run_url"),)

    occurrences = relationship(
        "ScanLinkOccurrence",
        back_populates="scan_link",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ScanLinkOccurrence.id",
    )


class ScanLinkOccurrence(OccurrenceMixin, Base):
    __tablename__ = "scan_link_occurrences"
    __table_args__ = (UniqueConstraint("scan_link_id", "source_page", name="uq_scan_link_occ_page"),)

    scan_link_id = Column(Integer, ForeignKey("scan_links.id", ondelete="CASCADE"), index=True, nullable=False)
    scan_link = relationship("ScanLink", back_populates="occurrences")


class ScanIgnoredLink(LinkRecordMixin, Base):
    __tablename__ = "scan_ignored_links"
    __table_args__ = (UniqueConstraint("scan_run_id", "link_url", name="uq_scan_ignored_links_run_url"),)

    occurrences = relationship(
        "ScanIgnoredOccurrence",
        back_populates="scan_ignored_link",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ScanIgnoredOccurrence.id",
    )


class ScanIgnoredOccurrence(OccurrenceMixin, Base):
    __tablename__ = "scan_ignored_occurrences"
    __table_args__ = (UniqueConstraint("scan_ignored_link_id", "source_page", name="uq_scan_ignored_occ_page"),)

    scan_ignored_link_id = Column(
        Integer, ForeignKey("scan_ignored_links.id", ondelete="CASCADE"), index=True, nullable=False
    )
    scan_ignored_link = relationship("ScanIgnoredLink", back_populates="occurrences")


class ScanIgnoreApplyState(Base):
    __tablename__ = "scan_ignore_apply_state"

    scan_run_id = Column(Integer, ForeignKey("scan_runs.id", ondelete="CASCADE"), primary_key=True)
    rules_hash = Column(String(64), nullable=False)
    last_applied_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
