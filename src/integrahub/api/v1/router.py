"""V1 API router aggregating all sub-routers."""

from fastapi import APIRouter

from integrahub.api.v1.integrations.router import router as integrations_router

v1_router = APIRouter()
v1_router.include_router(integrations_router, prefix="/integrations", tags=["integrations"])
