"""
API Routes Package

This package contains route handlers organized by feature:
- enrollment.py: WebSocket challenge session and REST enrollment endpoint
- authentication.py: REST endpoints for authentication and its log
- management.py: REST endpoints for owner management and statistics
"""

from api.routes.enrollment import router as enrollment_router
from api.routes.enrollment import rest_router as enrollment_rest_router
from api.routes.authentication import router as authentication_router
from api.routes.management import router as management_router

__all__ = [
    "enrollment_router",
    "enrollment_rest_router",
    "authentication_router",
    "management_router",
]
