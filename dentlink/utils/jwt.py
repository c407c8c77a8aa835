# dentlink/utils/jwt.py
from datetime import datetime, timedelta
from typing import Optional

from jose import jwt

from dentlink.core.config import settings


def create_access_token(user_id: int,
                        role: str,
                        expires_delta: Optional[timedelta] = None) -> str:
    """
    Token as issued by the identity provider: sub = user id, role = patient/doctor/admin.
    Used by tooling and tests; the core itself only decodes.
    """
    now = datetime.utcnow()
    payload = {
        "sub": str(user_id),
        "role": role.value if hasattr(role, "value") else str(role),
        "iat": now,
        "exp": now + (expires_delta or timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
