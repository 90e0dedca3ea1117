"""
API 路由包
"""
from .duel import router as duel_router

__all__ = ["duel_router"]
