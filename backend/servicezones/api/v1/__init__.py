"""API v1 router aggregation."""
from fastapi import APIRouter

from servicezones.api.v1.admin import router as admin_router
from servicezones.api.v1.areas import router as areas_router
from servicezones.api.v1.map import router as map_router
from servicezones.api.v1.regions import router as regions_router
from servicezones.api.v1.shops import router as shops_router

router = APIRouter()

router.include_router(map_router)
router.include_router(shops_router)
router.include_router(areas_router)
router.include_router(regions_router)
router.include_router(admin_router)
