from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from dentlink.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)


def log_activity(db: Session,
                 action: str,
                 *,
                 user_id: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None) -> ActivityLog:
    row = ActivityLog(user_id=user_id, action=action, details=details or {})
    db.add(row)
    logger.info("%s by user=%s %s", action, user_id, details or "")
    return row
