from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from dentlink.db.base import Base
from dentlink.models.common import MYSQL_ARGS, Money, enum_col


class ProposalStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


TERMINAL_STATUSES = (
    ProposalStatus.REJECTED,
    ProposalStatus.CANCELLED,
    ProposalStatus.COMPLETED,
)

# the chosen proposal of a case is in one of these
CHOSEN_STATUSES = (
    ProposalStatus.ACCEPTED,
    ProposalStatus.IN_PROGRESS,
    ProposalStatus.COMPLETED,
)


class Proposal(Base):
    """
    A doctor's treatment plan + price for a case.
    pending -> accepted | rejected | cancelled; accepted -> in_progress -> completed
    """
    __tablename__ = "proposals"
    __table_args__ = (
        UniqueConstraint("proposal_number",
                         name="uq_proposals_proposal_number"),
        Index("ix_proposals_case_status", "case_id", "status"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    proposal_number = Column(String(32), nullable=False)

    case_id = Column(Integer,
                     ForeignKey("cases.id", ondelete="CASCADE"),
                     nullable=False,
                     index=True)
    doctor_id = Column(Integer,
                       ForeignKey("users.id"),
                       nullable=False,
                       index=True)
    doctor_name = Column(String(120), nullable=False)  # snapshot at submit time

    cost = Column(Money, nullable=False)
    previous_cost = Column(Money, nullable=True)

    details = Column(Text, nullable=False, default="")  # treatment plan
    notes = Column(Text, nullable=True)
    duration = Column(String(64), nullable=True)  # free text, e.g. "2 weeks"

    status = Column(enum_col(ProposalStatus, "proposal_status"),
                    nullable=False,
                    default=ProposalStatus.PENDING,
                    index=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime,
                        default=datetime.utcnow,
                        onupdate=datetime.utcnow,
                        nullable=False)
    accepted_at = Column(DateTime, nullable=True)

    case = relationship("DentalCase", back_populates="proposals")
    doctor = relationship("User", lazy="joined")

    __mapper_args__ = {"version_id_col": version}
