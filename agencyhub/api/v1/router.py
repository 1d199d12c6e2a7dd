"""
API v1 router aggregator.

All v1 routes are registered here.
"""

from fastapi import APIRouter

from agencyhub.features.api_keys.router import router as api_keys_router
from agencyhub.features.integrations.router import router as integrations_router

# V1 API router
v1_router = APIRouter(prefix="/v1")

v1_router.include_router(api_keys_router)
v1_router.include_router(integrations_router)
