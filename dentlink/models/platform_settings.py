from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey

from dentlink.db.base import Base
from dentlink.models.common import MYSQL_ARGS, Money, Rate


class CommissionType(str, enum.Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class PlatformSettings(Base):
    """
    Single row (id=1) of global money settings.
    Doctors may override commission_type / commission_rate on their user row.
    """
    __tablename__ = "platform_settings"
    __table_args__ = MYSQL_ARGS

    id = Column(Integer, primary_key=True)

    commission_type = Column(String(20),
                             nullable=False,
                             default=CommissionType.PERCENTAGE.value)
    commission_rate = Column(Rate, nullable=False, default=10)

    monthly_fee = Column(Money, nullable=False, default=0)
    premium_visibility_fee = Column(Money, nullable=False, default=0)

    updated_at = Column(DateTime,
                        default=datetime.utcnow,
                        onupdate=datetime.utcnow)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
