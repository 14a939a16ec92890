"""API v1 router -- aggregates all v1 endpoint routers."""

from fastapi import APIRouter

from dealradar.api.v1 import crawls, deals, health, stores

api_v1_router = APIRouter()

api_v1_router.include_router(health.router, tags=["health"])
api_v1_router.include_router(stores.router, prefix="/stores", tags=["stores"])
api_v1_router.include_router(deals.router, prefix="/deals", tags=["deals"])
api_v1_router.include_router(crawls.router, prefix="/crawls", tags=["crawls"])
