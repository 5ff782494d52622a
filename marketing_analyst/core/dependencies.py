"""
FastAPI dependency injection module for the Marketing Analyst backend.

This module provides reusable FastAPI dependencies for configuration access
and the text-completion collaborator, so endpoint handlers never construct
infrastructure themselves and tests can swap either through
app.dependency_overrides.

Key Dependencies Provided:
- get_settings_dependency: Returns the cached Settings singleton
- get_completion_client_dependency: Returns the configured completion client,
  or None when no API key is set
- SettingsDep: Type alias for injecting Settings into endpoints
- CompletionClientDep: Type alias for injecting the completion client

Usage Examples:
    @router.post("/analyze")
    async def analyze_endpoint(
        settings: SettingsDep,
        client: CompletionClientDep,
    ) -> Dict[str, Any]:
        run = await analyze(agent_input, client, settings)
        return run.response.to_payload()

    # In tests
    app.dependency_overrides[get_completion_client_dependency] = lambda: fake_client
"""

from typing import Annotated, Optional

from fastapi import Depends

from marketing_analyst.core.config import Settings, get_settings
from marketing_analyst.services.completion import (
    TextCompletionClient,
    get_completion_client,
)


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so FastAPI's dependency override
    mechanism can replace it in tests:

        app.dependency_overrides[get_settings_dependency] = lambda: mock_settings
    """
    return get_settings()


# =============================================================================
# Completion Client Dependency
# =============================================================================

def get_completion_client_dependency(
    settings: Annotated[Settings, Depends(get_settings_dependency)],
) -> Optional[TextCompletionClient]:
    """
    Return the completion client built from the current settings.

    Returns:
        OpenAICompletionClient, or None when OPENAI_API_KEY is not configured
        (the analyze endpoint then answers with the deterministic analyst).
    """
    return get_completion_client(settings)


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

# Usage: async def endpoint(settings: SettingsDep)
SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

# Usage: async def endpoint(client: CompletionClientDep)
CompletionClientDep = Annotated[
    Optional[TextCompletionClient],
    Depends(get_completion_client_dependency),
]
