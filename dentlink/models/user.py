from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric

from dentlink.db.base import Base
from dentlink.models.common import MYSQL_ARGS, Rate, enum_col


class UserRole(str, enum.Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


class User(Base):
    """
    Patients, doctors and admins share one table.
    Doctor-only columns stay NULL for everyone else.
    """
    __tablename__ = "users"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    email = Column(String(191), unique=True,
                   nullable=False)  # <= 191, no index=True
    role = Column(enum_col(UserRole, "user_role"),
                  nullable=False,
                  default=UserRole.PATIENT)
    is_active = Column(Boolean, default=True, nullable=False)

    # doctor profile (comparison page)
    rating = Column(Numeric(3, 2), nullable=True)  # 0.00 - 5.00
    experience_years = Column(Integer, nullable=True)

    # per-doctor commission override; NULL => platform default
    commission_type = Column(String(20), nullable=True)  # fixed | percentage
    commission_rate = Column(Rate, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @property
    def is_doctor(self) -> bool:
        return self.role == UserRole.DOCTOR
