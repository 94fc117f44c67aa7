"""
API router - webhook ingress plus health probes.
"""
from fastapi import APIRouter
from schedsync.api.webhooks import router as webhooks_router
from schedsync.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(webhooks_router)
api_router.include_router(health_router)
