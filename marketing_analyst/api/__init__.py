"""
Backend API package initialization.

This package contains FastAPI router modules for the Marketing Analyst backend:
- analyze: POST /ai/analyze, evidence-gated answers to analyst questions
"""

from fastapi import APIRouter

from marketing_analyst.api.analyze import router as analyze_router

# Create main API router
api_router = APIRouter()
api_router.include_router(analyze_router)

__all__ = [
    "api_router",
    "analyze_router",
]
