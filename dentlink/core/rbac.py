from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional

from dentlink.core.errors import Forbidden


class Role(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """
    Authenticated caller as handed over by the identity provider.
    The role is trusted as-is.
    """
    user_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_doctor(self) -> bool:
        return self.role == Role.DOCTOR

    @property
    def is_patient(self) -> bool:
        return self.role == Role.PATIENT


def _role(x: Any) -> str:
    """
    Normalize a role safely.
    Supports Enum, str and objects with .role
    """
    if x is None:
        return ""
    if isinstance(x, Enum):
        return str(x.value)
    if isinstance(x, str):
        return x.lower()
    if hasattr(x, "role"):
        return _role(getattr(x, "role"))
    return str(x).lower()


def require_role(actor: Actor,
                 allowed: Iterable[Any],
                 *,
                 message: Optional[str] = None) -> None:
    """
    Raise Forbidden if actor's role isn't in `allowed`.
    """
    allowed_set = {_role(r) for r in allowed}
    if _role(actor.role) in allowed_set:
        return
    raise Forbidden(message or "You do not have permission to perform this action.")


def require_admin(actor: Actor) -> None:
    require_role(actor, [Role.ADMIN], message="Admin only")


def require_self_or_admin(actor: Actor, owner_id: Optional[int], *,
                          message: Optional[str] = None) -> None:
    if actor.is_admin:
        return
    if owner_id is not None and int(owner_id) == int(actor.user_id):
        return
    raise Forbidden(message or "You can only act on your own records.")
