from typing import Any, Dict, Optional
import logging
import traceback

from sqlalchemy.orm import Session, sessionmaker

from dentlink.models.error_log import ErrorLog

logger = logging.getLogger(__name__)


def log_error(
    session_factory: sessionmaker,
    *,
    description: Optional[str] = None,
    error_code: str = "error",
    module: Optional[str] = None,
    function: Optional[str] = None,
    case_id: Optional[int] = None,
    subject_id: Optional[int] = None,
    context: Optional[Dict[str, Any]] = None,
    stack_trace: Optional[str] = None,
) -> None:
    """
    Persist an error for manual reconciliation.
    Uses its own session: the caller's transaction is usually being rolled back.
    Never raises.
    """
    db: Session = session_factory()
    try:
        db.add(
            ErrorLog(
                error_code=error_code,
                description=(description or "")[:1000],
                module=module,
                function=function,
                case_id=case_id,
                subject_id=subject_id,
                context=context,
                stack_trace=stack_trace,
            ))
        db.commit()
    except Exception:
        # last resort: never raise from the logger
        db.rollback()
        logger.exception("Failed to persist error log (%s)", error_code)
    finally:
        db.close()


def format_exception(exc: Exception) -> str:
    return "".join(
        traceback.format_exception(type(exc), exc, exc.__traceback__))
