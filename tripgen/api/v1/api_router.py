from fastapi import APIRouter

from tripgen.api.v1.routers.plans import router as plans_router

v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(plans_router)
