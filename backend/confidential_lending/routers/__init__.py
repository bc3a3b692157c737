"""Confidential Lending - API Routers"""
from .auth import router as auth_router
from .scores import router as scores_router
from .loans import router as loans_router
from .admin import router as admin_router

__all__ = [
    "auth_router",
    "scores_router",
    "loans_router",
    "admin_router",
]
