"""
API Routes Package

Contains all route modules for the budget API.
"""

from .imports import router as imports_router
from .rules import router as rules_router

__all__ = [
    "imports_router",
    "rules_router",
]
