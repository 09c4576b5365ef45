# carelog/api/router.py
from fastapi import APIRouter
from carelog.api import (
    routes_auth,
    routes_mar,
)

api_router = APIRouter()

api_router.include_router(routes_auth.router, prefix="/auth", tags=["Auth"])
api_router.include_router(routes_mar.router)
