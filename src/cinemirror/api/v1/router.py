"""API v1 main router.

Aggregates all v1 API routers into a single router for inclusion in the app.
"""

from fastapi import APIRouter

from cinemirror.api.v1.admin import router as admin_router
from cinemirror.api.v1.catalog import router as catalog_router
from cinemirror.api.v1.lookups import router as lookups_router

router = APIRouter()

# Include sub-routers
router.include_router(catalog_router, prefix="/catalog", tags=["Catalog"])
router.include_router(lookups_router)
router.include_router(admin_router, prefix="/admin", tags=["Admin"])
