"""
Pydantic schemas for the agent executor API.
"""

import uuid
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Use the available tools when you need "
    "external information or computation, then give a concise final answer."
)


class AgentRunRequest(BaseModel):
    """Request body for /v1/agent/run."""

    input: str = Field(..., min_length=1, description="The user's request")
    system: str = Field(
        default=DEFAULT_SYSTEM_PROMPT, description="System instructions for the run"
    )
    max_iterations: Optional[int] = Field(
        default=None, ge=1, le=100, description="Override the iteration cap"
    )
    max_execution_time: Optional[float] = Field(
        default=None, gt=0, description="Override the time budget in seconds"
    )
    include_trace: bool = Field(
        default=False, description="Include the full message trace in the response"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "input": "What is sqrt(144) + 10^2?",
                "max_iterations": 5,
            }
        }
    }


class TraceToolCall(BaseModel):
    id: str
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class TraceMessage(BaseModel):
    """A single message of a run's trace."""

    role: Literal["system", "user", "assistant", "tool_result"]
    content: str = ""
    tool_calls: list[TraceToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None


class AgentRunResponse(BaseModel):
    """Response body for /v1/agent/run."""

    id: str = Field(default_factory=lambda: f"run-{uuid.uuid4().hex[:8]}")
    final_text: str
    status: Literal["finished", "aborted"]
    iterations: int
    error: Optional[str] = None
    tools_used: list[str] = Field(default_factory=list)
    trace: Optional[list[TraceMessage]] = Field(
        default=None, description="Message trace (when include_trace=True)"
    )


class ToolInfo(BaseModel):
    name: str
    description: str
    parameters: dict[str, Any]
    return_direct: bool = False


class ToolListResponse(BaseModel):
    object: Literal["list"] = "list"
    data: list[ToolInfo]


class HealthResponse(BaseModel):
    """Response body for /health endpoint."""

    status: Literal["healthy", "unhealthy"]
    version: str
    tools: int


class ErrorResponse(BaseModel):
    detail: str
