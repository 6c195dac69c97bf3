"""Disruption Hub - API Routers"""
from .auth import router as auth_router
from .action_hub import router as action_hub_router

__all__ = [
    "auth_router",
    "action_hub_router",
]
