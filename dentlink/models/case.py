from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    JSON,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from dentlink.db.base import Base
from dentlink.models.common import MYSQL_ARGS, enum_col


class CaseUrgency(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    EMERGENCY = "emergency"


class CaseStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


# statuses in which doctors may still propose and the patient may still choose
SELECTABLE_STATUSES = (CaseStatus.OPEN, CaseStatus.ASSIGNED)


class DentalCase(Base):
    """
    Patient submits -> admin reviews/assigns doctors -> doctors propose ->
    patient chooses one proposal -> treatment -> completed.
    """
    __tablename__ = "cases"
    __table_args__ = (
        UniqueConstraint("case_number", name="uq_cases_case_number"),
        Index("ix_cases_patient_status", "patient_id", "status"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True, index=True)
    case_number = Column(String(32), nullable=False)  # DL-YYYYMMDD-000001

    patient_id = Column(Integer,
                        ForeignKey("users.id"),
                        nullable=False,
                        index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    treatment_needed = Column(String(255), nullable=True)
    affected_teeth = Column(JSON, nullable=True)
    urgency = Column(enum_col(CaseUrgency, "case_urgency"),
                     nullable=False,
                     default=CaseUrgency.NORMAL)

    status = Column(enum_col(CaseStatus, "case_status"),
                    nullable=False,
                    default=CaseStatus.PENDING_REVIEW,
                    index=True)
    payment_status = Column(enum_col(PaymentStatus, "case_payment_status"),
                            nullable=False,
                            default=PaymentStatus.UNPAID)

    # no FK: proposals reference cases, and the pair is checked in the engine
    chosen_proposal_id = Column(Integer, nullable=True)

    # external storage URLs, not owned here
    images = Column(JSON, nullable=True)

    assignment_time = Column(DateTime, nullable=True)
    proposal_deadline = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime,
                        default=datetime.utcnow,
                        onupdate=datetime.utcnow,
                        nullable=False)

    patient = relationship("User", foreign_keys=[patient_id])
    assignments = relationship("CaseAssignment",
                               back_populates="case",
                               cascade="all, delete-orphan")
    proposals = relationship("Proposal",
                             back_populates="case",
                             order_by="Proposal.id")

    __mapper_args__ = {"version_id_col": version}

    @property
    def assigned_doctor_ids(self) -> list[int]:
        return sorted(a.doctor_id for a in self.assignments)


class CaseAssignment(Base):
    """assigned_doctor_ids as rows: (case, doctor) is unique."""
    __tablename__ = "case_assignments"
    __table_args__ = (
        UniqueConstraint("case_id",
                         "doctor_id",
                         name="uq_case_assignments_case_doctor"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True)
    case_id = Column(Integer,
                     ForeignKey("cases.id", ondelete="CASCADE"),
                     nullable=False,
                     index=True)
    doctor_id = Column(Integer,
                       ForeignKey("users.id"),
                       nullable=False,
                       index=True)
    assigned_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    case = relationship("DentalCase", back_populates="assignments")
    doctor = relationship("User")
