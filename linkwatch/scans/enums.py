import enum


class ScanRunStatus(str, enum.Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in RUN_TERMINAL


RUN_TERMINAL = frozenset({ScanRunStatus.COMPLETED, ScanRunStatus.FAILED, ScanRunStatus.CANCELLED})
RUN_ACTIVE = frozenset({ScanRunStatus.QUEUED, ScanRunStatus.IN_PROGRESS})


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in JOB_TERMINAL


JOB_TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
JOB_ACTIVE = frozenset({JobStatus.QUEUED, JobStatus.CLAIMED})


class LinkClassification(str, enum.Enum):
    OK = "ok"
    BROKEN = "broken"
    BLOCKED = "blocked"
    NO_RESPONSE = "no_response"


class IgnoredSource(str, enum.Enum):
    NONE = "none"
    MANUAL = "manual"
    RULE = "rule"
