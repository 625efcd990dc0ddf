"""
Response Formatter for the Audit Assistant

Builds the channel-neutral ``ChatResponse`` handed to delivery channels and
renders it for the JSON and plain-text surfaces. Workflow payloads
(events, summaries, anomaly records) are converted to JSON-safe data here,
so channels never see pydantic models or datetimes.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import TypeAdapter

from shared.config.logging_config import get_component_logger
from shared.schemas.audit_models import ChatResponse


_JSON_ADAPTER = TypeAdapter(Any)


class ResponseFormat(Enum):
    """Wire formats a response can be rendered to."""
    API = "api"
    TEXT = "text"


def to_json_safe(data: Any) -> Any:
    """Convert models, dataclasses, enums and datetimes into plain JSON values."""
    if data is None:
        return None
    return _JSON_ADAPTER.dump_python(data, mode='json')


class ResponseFormatter:
    """Formats workflow results for delivery channels."""

    def __init__(self, logger=None):
        self.logger = logger or get_component_logger("integration.response_formatter")

    def format_api_response(
        self,
        message: str,
        data: Any = None,
        success: bool = True,
        fallback: Optional[bool] = None,
        clarification: Optional[bool] = None
    ) -> ChatResponse:
        return ChatResponse(
            message=message,
            data=to_json_safe(data),
            success=success,
            fallback=fallback,
            clarification=clarification
        )

    def format_error(self, error: Exception, prefix: str = "I encountered an error") -> ChatResponse:
        self.logger.error(f"Formatting error response: {error}", extra={"error_class": type(error).__name__})
        return self.format_api_response(f"{prefix}: {error}", success=False)

    def format_text(self, response: ChatResponse) -> str:
        """Plain-text rendering: the message itself, or a marked failure."""
        if not response.success:
            return f"❌ {response.message}"
        return response.message

    def render(self, response: ChatResponse, response_format: ResponseFormat = ResponseFormat.API) -> Any:
        if response_format == ResponseFormat.TEXT:
            return self.format_text(response)
        return response.to_dict()
