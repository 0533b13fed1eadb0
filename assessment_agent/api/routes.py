"""API router aggregation; `assessment_agent/main.py` mounts `router` under /api/v1."""

from __future__ import annotations

from fastapi import APIRouter

from assessment_agent.api import assignments as assignments_api

router = APIRouter()
router.include_router(assignments_api.router)
