"""
Marketing Analyst Backend Package.

FastAPI service answering natural-language questions about a workspace's
marketing performance. Every answer is computed from aggregation tools, checked
against a fixed response contract and gated on the evidence the tools produced.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, exceptions and dependencies
    - models: Pydantic schemas and enums
    - services: Dataset, tools, analysts, validation and evidence binding
"""

__version__ = "1.0.0"
