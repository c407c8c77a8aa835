# FILE: dentlink/api/response.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from dentlink.core.errors import DentlinkError


def _respond(payload: Dict[str, Any], status_code: int) -> JSONResponse:
    # Decimal amounts go out as strings, enums as their values
    return JSONResponse(status_code=status_code,
                        content=jsonable_encoder(payload))


def ok(data: Any = None, *, status_code: int = 200) -> JSONResponse:
    """{"ok": true, "data": ...}"""
    return _respond({"ok": True, "data": data}, status_code)


def ok_list(rows: List[Any], *, limit: Optional[int] = None) -> JSONResponse:
    """List endpoints also report how many rows came back."""
    meta: Dict[str, Any] = {"count": len(rows)}
    if limit is not None:
        meta["limit"] = limit
    return _respond({"ok": True, "data": rows, "meta": meta}, 200)


def err(
    msg: str,
    *,
    status_code: int = 400,
    code: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    """{"ok": false, "error": {"msg", "code", "details"}}"""
    return _respond(
        {
            "ok": False,
            "error": {
                "msg": msg,
                "code": code,
                "details": details
            },
        }, status_code)


def err_from(exc: DentlinkError) -> JSONResponse:
    return err(str(exc),
               status_code=exc.status_code,
               code=exc.code,
               details=exc.extra)
