# FILE: dentlink/services/numbering.py
from __future__ import annotations

from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dentlink.core.retry import as_conflict
from dentlink.models.number_series import NumberSeries
from dentlink.utils.timezone import today_local

PREFIXES = {
    "CASE": "DL",
    "PROPOSAL": "PR",
    "LEDGER": "TR",
}


def _date_key(d: Optional[date] = None) -> int:
    dd = d or today_local()
    return int(dd.strftime("%Y%m%d"))


def _lock_series(db: Session, key: str, dk: int) -> NumberSeries:
    return (
        db.query(NumberSeries)
        .filter(NumberSeries.key == key, NumberSeries.date_key == dk)
        .with_for_update()
        .first()
    )


def next_doc_number(db: Session, key: str) -> str:
    """
    DL-20261019-000001 style numbers, one counter per (key, day).
    The series row is locked until the caller's transaction ends.
    """
    prefix = PREFIXES[key]
    today = today_local()
    dk = _date_key(today)

    row = _lock_series(db, key, dk)
    if not row:
        row = NumberSeries(key=key, date_key=dk, next_seq=1)
        db.add(row)
        try:
            db.flush()
        except IntegrityError as e:
            # another request created today's row first; the caller retries
            raise as_conflict(e)

    seq = int(row.next_seq or 1)
    row.next_seq = seq + 1
    db.flush()

    return f"{prefix}-{dk}-{seq:06d}"
