"""API router for v1 endpoints."""

from fastapi import APIRouter

from app.api import canvas_affinities, canvas_layout, canvas_suggestions, frameworks, health_analysis

router = APIRouter()

# Framework templates and project framework snapshots
router.include_router(frameworks.router, tags=["frameworks"])

# Health-analysis agent sessions (SSE)
router.include_router(health_analysis.router, prefix="/health-analysis", tags=["health_analysis"])

# Suggestion lifecycle
router.include_router(canvas_suggestions.router, tags=["canvas_suggestions"])

# Zone affinities
router.include_router(canvas_affinities.router, tags=["canvas_affinities"])

# Layout and position overrides
router.include_router(canvas_layout.router, tags=["canvas_layout"])
