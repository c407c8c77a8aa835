from datetime import datetime

from sqlalchemy import Column, Integer, DateTime, ForeignKey, UniqueConstraint

from dentlink.db.base import Base
from dentlink.models.common import MYSQL_ARGS


class ChatChannel(Base):
    """
    Permission for a patient <-> doctor chat on a case.
    Written in the acceptance transaction; dispatched_at marks the one signal
    sent to the messaging gateway.
    """
    __tablename__ = "chat_channels"
    __table_args__ = (
        UniqueConstraint("case_id", name="uq_chat_channels_case"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    case_id = Column(Integer, ForeignKey("cases.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    granted_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    dispatched_at = Column(DateTime, nullable=True)
