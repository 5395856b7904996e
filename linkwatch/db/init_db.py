from sqlalchemy.engine import Engine

from linkwatch.db.base import Base

# Import models so SQLAlchemy registers them
from linkwatch.sites.models import Site  # noqa
from linkwatch.ignores.models import IgnoreRule  # noqa
from linkwatch.scans.models import (  # noqa
    ScanRun,
    ScanJob,
    ScanLink,
    ScanLinkOccurrence,
    ScanIgnoredLink,
    ScanIgnoredOccurrence,
    ScanIgnoreApplyState,
)


def init_db(engine: Engine):
    Base.metadata.create_all(bind=engine)
