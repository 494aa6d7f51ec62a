"""
API Routes Package

This module consolidates all API routes for the fiat conversion service.
"""

from fastapi import APIRouter

from . import conversions

# Create main router
router = APIRouter()

router.include_router(
    conversions.router, prefix="/fiat-conversion", tags=["fiat-conversion"]
)

# Export for use in main application
__all__ = ["router"]
