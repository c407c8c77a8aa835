from sqlalchemy import Column, Integer, String, UniqueConstraint

from dentlink.db.base import Base
from dentlink.models.common import MYSQL_ARGS


class NumberSeries(Base):
    """Per-day counters for DL-/PR-/TR- document numbers."""
    __tablename__ = "number_series"
    __table_args__ = (
        UniqueConstraint("key", "date_key", name="uq_number_series_key_date"),
        MYSQL_ARGS,
    )

    id = Column(Integer, primary_key=True)
    key = Column(String(20), nullable=False)  # CASE | PROPOSAL | LEDGER
    date_key = Column(Integer, nullable=False)  # YYYYMMDD
    next_seq = Column(Integer, nullable=False, default=1)
