"""
FastAPI router module for analyst questions.

Implements POST /ai/analyze: answers a natural-language question about a
workspace's marketing performance with an evidence-gated FinalResponse.

Flow:
    1. Request body validated as AnalyzeRequest (400 envelope otherwise,
       see main.request_validation_handler)
    2. analyze() runs the model-guided analyst when enabled and a completion
       client is configured, falling back to the deterministic analyst
    3. The FinalResponse is returned verbatim, or wrapped as
       {result, trace} when ?debug=true

API Contract:
- 200: FinalResponse JSON (status "ok" or "insufficient_data")
- 200 with ?debug=true: { result: FinalResponse, trace: AgentTrace }
- 400: { success: false, message } for invalid request bodies
- 500: { success: false, message: "Unable to process analyst request at the moment." }
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from marketing_analyst.core.dependencies import CompletionClientDep, SettingsDep
from marketing_analyst.models.schemas import (
    AnalyzeRequest,
    DebugAnalyzeResponse,
    ErrorEnvelope,
    FinalResponse,
)
from marketing_analyst.services.analyst_agent import AgentInput, analyze


# Configure logging
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["analyst"])

GENERIC_FAILURE_MESSAGE: str = "Unable to process analyst request at the moment."


@router.post(
    "/analyze",
    response_model=None,
    responses={
        200: {"model": FinalResponse, "description": "Evidence-gated analyst answer"},
        400: {"model": ErrorEnvelope, "description": "Invalid request body"},
        500: {"model": ErrorEnvelope, "description": "Analyst failure"},
    },
)
async def analyze_question(
    request: AnalyzeRequest,
    settings: SettingsDep,
    client: CompletionClientDep,
    debug: bool = Query(default=False, description="Include the agent trace"),
) -> Any:
    """
    Answer a question about a workspace over a date range.

    Args:
        request: Question, workspace, window and optional scope
        settings: Application settings (agent bounds, model toggle)
        client: Completion client, or None when no API key is configured
        debug: When true, return {result, trace} instead of the bare response

    Returns:
        FinalResponse payload, or DebugAnalyzeResponse payload in debug mode
    """
    agent_input = AgentInput.from_request(request)
    logger.info(
        f"Analyze request for workspace {agent_input.workspace_id} "
        f"({agent_input.date_range.start}..{agent_input.date_range.end})"
    )

    try:
        run = await analyze(agent_input, client, settings)
    except Exception:
        logger.exception(f"Analyst request failed for workspace {agent_input.workspace_id}")
        return JSONResponse(
            status_code=500,
            content=ErrorEnvelope(message=GENERIC_FAILURE_MESSAGE).model_dump(),
        )

    if debug:
        body: Dict[str, Any] = DebugAnalyzeResponse(
            result=run.response,
            trace=run.trace,
        ).model_dump(mode="json", exclude_none=True)
        return body

    return run.response.to_payload()
