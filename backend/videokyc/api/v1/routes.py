"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from videokyc.api.v1.endpoints import (
    video_calls,
    kyc,
    signaling,
)

api_router = APIRouter()

api_router.include_router(video_calls.router)
api_router.include_router(kyc.router)
api_router.include_router(signaling.router)
