from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, JSON

from dentlink.db.base import Base
from dentlink.models.common import MYSQL_ARGS


class ActivityLog(Base):
    """
    Who did what, written in the same transaction as the change.
    """
    __tablename__ = "activity_logs"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, nullable=True)  # system jobs may be null
    action = Column(String(40), nullable=False)  # CASE_SUBMITTED, ...
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
