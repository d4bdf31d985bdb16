"""API v1 router aggregation."""

from fastapi import APIRouter

from app.api.v1 import wallet, webhooks

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(wallet.router)
api_router.include_router(webhooks.router)
