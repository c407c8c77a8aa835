# FILE: dentlink/core/retry.py
from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from dentlink.core.config import settings
from dentlink.core.errors import Conflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


def as_conflict(exc: Exception) -> Conflict:
    return Conflict("Record was changed by another request, please retry",
                    extra={"cause": type(exc).__name__})


def run_with_conflict_retry(fn: Callable[[], T],
                            *,
                            attempts: int | None = None,
                            label: str = "operation",
                            backoff: float = 0.05) -> T:
    """
    Run fn, re-running it (fn must open its own session and re-read state)
    when it loses a race. Gives up after `attempts` and raises Conflict.
    """
    attempts = attempts or settings.CONFLICT_MAX_RETRIES
    last: Conflict | None = None
    for n in range(1, attempts + 1):
        try:
            return fn()
        except Conflict as e:
            last = e
        except StaleDataError as e:
            last = as_conflict(e)
        except OperationalError as e:
            # sqlite "database is locked" and mysql deadlock/lock-wait both land here
            last = as_conflict(e)
        logger.warning("%s lost a race (attempt %s/%s): %s", label, n,
                       attempts, last)
        if n < attempts:
            time.sleep(backoff * n)
    raise last


def is_duplicate(exc: IntegrityError) -> bool:
    msg = str(getattr(exc, "orig", exc)).lower()
    return "unique" in msg or "duplicate" in msg
