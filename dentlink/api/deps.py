# dentlink/api/deps.py
from __future__ import annotations

from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from sqlalchemy.orm import Session, sessionmaker

from dentlink.core.config import settings
from dentlink.core.rbac import Actor, Role
from dentlink.db.session import SessionLocal
from dentlink.services.settlement import SettlementCoordinator

_coordinator: Optional[SettlementCoordinator] = None


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_db(factory: sessionmaker = Depends(get_session_factory)
           ) -> Generator[Session, None, None]:
    db = factory()
    try:
        yield db
    finally:
        db.close()


def get_coordinator(factory: sessionmaker = Depends(get_session_factory)
                    ) -> SettlementCoordinator:
    global _coordinator
    if _coordinator is None or _coordinator.session_factory is not factory:
        _coordinator = SettlementCoordinator(factory)
    return _coordinator


# =========================================================
# AUTH
# =========================================================
def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_token(raw_token: str) -> dict:
    try:
        return jwt.decode(raw_token,
                          settings.JWT_SECRET,
                          algorithms=[settings.JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def current_actor(authorization: Optional[str] = Header(None)) -> Actor:
    token = _extract_bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = _decode_token(token)

    try:
        user_id = int(payload.get("sub"))
        role = Role(str(payload.get("role") or "").lower())
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token claims")
    return Actor(user_id=user_id, role=role)
