"""
Exception taxonomy for the analyst pipeline.

Every failure the analyst raises derives from AnalystError so that callers can
tell pipeline failures (fall back to the deterministic analyst) apart from
programming errors. The message of each exception names the exact condition
that failed; fallback logic discriminates on type, logging on message.

Hierarchy:
    AnalystError
    ├── ModelResponseParseError      model output is not the JSON shape asked for
    ├── FinalResponseValidationError final document breaks the response contract
    ├── UnknownToolError             tool name is not in the registry
    ├── ToolArgumentError            required tool parameter missing or invalid
    └── CompletionError              completion collaborator failed
"""


class AnalystError(Exception):
    """Base class for every error raised by the analyst pipeline."""


class ModelResponseParseError(AnalystError):
    """
    Raised when a completion cannot be parsed into the requested JSON shape.

    The message always has the form ``Failed to parse <label>: <reason>``.
    """

    def __init__(self, label: str, reason: str):
        self.label = label
        self.reason = reason
        super().__init__(f"Failed to parse {label}: {reason}")


class FinalResponseValidationError(AnalystError):
    """Raised when a FinalResponse candidate violates the response contract."""


class UnknownToolError(AnalystError, LookupError):
    """Raised when dispatch is asked for a tool name that is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown tool: {name}")


class ToolArgumentError(AnalystError, ValueError):
    """Raised when a tool call is missing a required parameter or has a bad one."""


class CompletionError(AnalystError):
    """Raised when the text-completion collaborator fails or returns no text."""
