"""Main API router that includes all sub-routers."""

from __future__ import annotations

from fastapi import APIRouter

from itemsync.server.api import auth, health, items

router = APIRouter()

# Include all API routers
router.include_router(health.router)
router.include_router(auth.router)
router.include_router(items.router)
