from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Text,
    JSON,
)

from dentlink.db.base import Base
from dentlink.models.common import MYSQL_ARGS


class ErrorLog(Base):
    """
    Problems that need manual reconciliation (ledger inconsistencies,
    settlements that ran out of retries).
    """
    __tablename__ = "error_logs"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)

    error_code = Column(String(50), nullable=False, default="error")

    # quick summary
    description = Column(String(1000), nullable=True)

    # where it happened
    module = Column(String(255), nullable=True)  # e.g. "settlement"
    function = Column(String(255), nullable=True)  # e.g. "pay_for_case"

    case_id = Column(Integer, nullable=True)
    subject_id = Column(Integer, nullable=True)

    context = Column(JSON, nullable=True)

    # exception / stack
    stack_trace = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
