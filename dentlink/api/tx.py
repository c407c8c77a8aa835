# FILE: dentlink/api/tx.py
from __future__ import annotations

from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from dentlink.core.retry import run_with_conflict_retry

T = TypeVar("T")


def in_transaction(db: Session,
                   fn: Callable[[], T],
                   *,
                   label: str = "request") -> T:
    """One `with db.begin()` per attempt; a lost race rolls back and re-runs fn."""

    def attempt() -> T:
        with db.begin():
            return fn()

    return run_with_conflict_retry(attempt, label=label)
