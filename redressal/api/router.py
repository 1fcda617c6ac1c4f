"""Main API router combining all v1 route modules.

Aggregates all routers under the ``/api/v1`` prefix so the FastAPI
application only needs to include a single router.

Includes:
    * Grievances: filing, queries, lifecycle transitions
    * Directory: offices and escalation rules
    * Admin: deadline sweeps and reports
    * Health: liveness and readiness
"""

from __future__ import annotations

from fastapi import APIRouter

from redressal.api.v1 import admin, directory, grievances, health

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(grievances.router)
api_router.include_router(directory.router)
api_router.include_router(admin.router)
api_router.include_router(health.router)
