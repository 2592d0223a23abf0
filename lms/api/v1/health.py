"""
Health check endpoint
"""
from fastapi import APIRouter
from lms.core.config import settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint

    Returns service status and version.
    """
    return {
        "status": "ok",
        "service": "leave-management-engine",
        "version": settings.VERSION or "dev",
        "env": settings.APP_ENV,
    }
