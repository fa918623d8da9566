"""
Agent run endpoints.

POST /v1/agent/run executes one reasoning loop; GET /v1/tools lists the
tools that runs may use.
"""

import dataclasses
import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException

from ...config import config
from ...errors import ToolExecutionError
from ...executor import AgentExecutor, ExecutorLimits
from ...gateway import CompletionGateway, build_tool_definitions
from ...tools import ToolRegistry
from ...tracing import TracingContext
from ..dependencies import get_gateway, get_registry
from ..schemas import (
    AgentRunRequest,
    AgentRunResponse,
    ErrorResponse,
    ToolInfo,
    ToolListResponse,
    TraceMessage,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/v1/tools",
    response_model=ToolListResponse,
    summary="List tools",
    description="List the tools available to agent runs.",
)
def list_tools(registry: ToolRegistry = Depends(get_registry)) -> ToolListResponse:
    tools = list(registry.all_tools().values())
    definitions = build_tool_definitions(tools)
    return ToolListResponse(
        data=[
            ToolInfo(
                name=descriptor.name,
                description=descriptor.description,
                parameters=definition["function"]["parameters"],
                return_direct=descriptor.return_direct,
            )
            for descriptor, definition in zip(tools, definitions)
        ]
    )


@router.post(
    "/v1/agent/run",
    response_model=AgentRunResponse,
    response_model_exclude_none=True,
    responses={
        502: {"model": ErrorResponse, "description": "A fail-loud tool failed"},
    },
    summary="Run the agent",
    description=(
        "Run the tool-augmented reasoning loop for one request. Budget "
        "exhaustion is reported as status 'aborted', not as an error."
    ),
)
def run_agent(
    request: AgentRunRequest,
    registry: ToolRegistry = Depends(get_registry),
    gateway: CompletionGateway = Depends(get_gateway),
) -> AgentRunResponse:
    execution_id = f"run-{uuid.uuid4().hex[:8]}"
    logger.info("[%s] Processing agent run: %s", execution_id, request.input[:100])

    limits = ExecutorLimits.from_config(config.executor)
    overrides = {}
    if request.max_iterations is not None:
        overrides["max_iterations"] = request.max_iterations
    if request.max_execution_time is not None:
        overrides["max_execution_time"] = request.max_execution_time
    if overrides:
        limits = dataclasses.replace(limits, **overrides)

    executor = AgentExecutor(
        gateway=gateway,
        registry=registry,
        limits=limits,
        tracing_context=TracingContext(execution_id=execution_id),
    )

    try:
        result = executor.run(request.input, request.system, execution_id=execution_id)
    except ToolExecutionError as e:
        logger.error("[%s] Run failed: %s", execution_id, e)
        raise HTTPException(status_code=502, detail=str(e)) from e

    trace = None
    if request.include_trace:
        trace = [TraceMessage.model_validate(message.to_dict()) for message in result.trace]

    return AgentRunResponse(
        id=execution_id,
        final_text=result.final_text,
        status=result.status.value,
        iterations=result.iterations,
        error=result.error,
        tools_used=result.tools_used(),
        trace=trace,
    )
