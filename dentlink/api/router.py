# dentlink/api/router.py
from fastapi import APIRouter

from dentlink.api import (
    routes_cases,
    routes_proposals,
    routes_wallet,
    routes_finance,
    routes_settings,
)

api_router = APIRouter()

api_router.include_router(routes_cases.router)
api_router.include_router(routes_proposals.router)
api_router.include_router(routes_wallet.router)
api_router.include_router(routes_finance.router)
api_router.include_router(routes_settings.router)
