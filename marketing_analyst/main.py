"""
FastAPI application entry point for the Marketing Analyst API.

This module configures logging and CORS, registers the analyst router, maps
request validation failures onto the {success, message} envelope, and warms the
MetricRow dataset at startup.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketing_analyst import __version__
from marketing_analyst.api import api_router
from marketing_analyst.core.config import get_settings
from marketing_analyst.models.schemas import ErrorEnvelope
from marketing_analyst.services.dataset import load_metric_rows

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.

    On startup:
        - Load the MetricRow dataset into the process cache
        - Log which analyst mode is available

    On shutdown:
        - Log shutdown message
    """
    settings = get_settings()
    logger.info("Marketing Analyst API starting")
    try:
        rows = load_metric_rows(settings.dataset_path)
        logger.info(f"Dataset ready: {len(rows)} metric rows")
    except (OSError, ValueError) as e:
        # Requests load the dataset lazily and report the failure themselves
        logger.error(f"Failed to load dataset from {settings.dataset_path}: {e}")

    if settings.use_llm_agent and settings.openai_api_key:
        logger.info(f"Model-guided analyst enabled ({settings.llm_model})")
    else:
        logger.info("Model-guided analyst disabled; using deterministic analyst")

    yield

    logger.info("Marketing Analyst API shutting down")


# Create FastAPI application
app = FastAPI(
    title="Marketing Analyst API",
    version=__version__,
    description=(
        "Evidence-gated marketing analyst. Answers performance questions "
        "from KPI, comparison, time-series and anomaly tools."
    ),
    lifespan=lifespan,
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Return invalid request bodies as 400 {success: false, message}.

    The message names the first offending field, e.g.
    "body.dateRange: Field required".
    """
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "")
    else:
        message = "Invalid request"
    logger.info(f"Rejected request to {request.url.path}: {message}")
    return JSONResponse(
        status_code=400,
        content=ErrorEnvelope(message=message).model_dump(),
    )


# Register API routers
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer probes.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    """
    Root endpoint providing API information.

    Returns:
        Dict with API name and version
    """
    return {
        "name": "Marketing Analyst API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "marketing_analyst.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
