"""
OpenAI-compatible completion gateway.

Works against OpenAI or any OpenAI-compatible endpoint (vLLM, SGLang,
Ollama's /v1). Two decision formats are supported:

- native: tools are sent through the ``tools`` API parameter and tool
  requests come back as ``message.tool_calls``.
- text: tools are embedded in the system prompt as a ``<tools>`` block and
  the model writes ``<tool_call>{...}</tool_call>`` blocks in its text,
  for servers started without auto tool choice.
"""

import json
import logging
import re
import uuid
from typing import Any, Optional, Sequence

from openai import OpenAI, OpenAIError

from ..config import config
from ..errors import CompletionUnavailableError
from ..models import (
    CompletionConfig,
    FinalAnswer,
    Message,
    Role,
    StepDecision,
    ToolCall,
    ToolRequests,
)
from ..tools.registry import ToolDescriptor
from ..tracing import TracingContext
from .base import CompletionGateway
from .tool_defs import build_tool_definitions, build_tools_prompt_block

logger = logging.getLogger(__name__)

_TOOL_CALL_BLOCK = re.compile(r"<tool_call>\s*(.*?)\s*</tool_call>", re.DOTALL)


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


class OpenAIGateway(CompletionGateway):
    """
    Completion gateway backed by the OpenAI SDK.

    The gateway is shared by concurrent runs; each run passes its own
    TracingContext per call so completions nest under that run's trace.
    """

    def __init__(
        self,
        settings: Optional[CompletionConfig] = None,
        client: Optional[OpenAI] = None,
    ):
        self.settings = settings or config.completion
        # Retries are owned by the executor's recovery policy.
        self._client = client or OpenAI(
            base_url=self.settings.base_url,
            api_key=self.settings.api_key,
            max_retries=0,
        )

    @property
    def model(self) -> str:
        return self.settings.model

    def next_step(
        self,
        history: Sequence[Message],
        tools: Sequence[ToolDescriptor],
        timeout: Optional[float] = None,
        tracing: Optional[TracingContext] = None,
    ) -> StepDecision:
        definitions = build_tool_definitions(tools)
        if self.settings.native_tool_calls:
            messages = self._to_native_messages(history)
            message = self._create(messages, timeout, tools=definitions or None, tracing=tracing)
            return self._decide_native(message)

        messages = self._to_text_messages(history, definitions)
        message = self._create(messages, timeout, tracing=tracing)
        return self.parse_text_decision(message.content or "")

    def complete(
        self,
        prompt: str,
        timeout: Optional[float] = None,
        tracing: Optional[TracingContext] = None,
    ) -> str:
        message = self._create([{"role": "user", "content": prompt}], timeout, tracing=tracing)
        return message.content or ""

    def close(self) -> None:
        try:
            self._client.close()
        except Exception as e:
            logger.debug("Error closing OpenAI client: %s", e)

    def _create(
        self,
        messages: list[dict],
        timeout: Optional[float],
        tools: Optional[list[dict]] = None,
        tracing: Optional[TracingContext] = None,
    ) -> Any:
        """Issue one chat completion request and return its first message."""
        effective_timeout = self.settings.timeout
        if timeout is not None:
            effective_timeout = min(effective_timeout, timeout)

        create_kwargs: dict = {
            "model": self.settings.model,
            "messages": messages,
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
            "timeout": effective_timeout,
        }
        if tools:
            create_kwargs["tools"] = tools

        if tracing is not None:
            with tracing.generation(
                name="completion",
                model=self.settings.model,
                input=messages,
                model_parameters={
                    "temperature": self.settings.temperature,
                    "max_tokens": self.settings.max_tokens,
                },
            ) as gen:
                try:
                    response = self._request(create_kwargs)
                except CompletionUnavailableError:
                    gen.set_status("error")
                    raise
                message = self._first_message(response)
                gen.set_output(message.content or "")
                if getattr(response, "usage", None):
                    gen.set_usage(
                        prompt_tokens=response.usage.prompt_tokens,
                        completion_tokens=response.usage.completion_tokens,
                        total_tokens=response.usage.total_tokens,
                    )
                return message

        return self._first_message(self._request(create_kwargs))

    def _request(self, create_kwargs: dict) -> Any:
        try:
            return self._client.chat.completions.create(**create_kwargs)
        except OpenAIError as e:
            logger.error("Completion request failed: %s", e)
            raise CompletionUnavailableError(f"Completion service error: {e}") from e

    @staticmethod
    def _first_message(response: Any) -> Any:
        if not getattr(response, "choices", None):
            raise CompletionUnavailableError("Completion response contained no choices")
        return response.choices[0].message

    @staticmethod
    def _to_native_messages(history: Sequence[Message]) -> list[dict]:
        messages: list[dict] = []
        for msg in history:
            if msg.role is Role.TOOL_RESULT:
                messages.append(
                    {"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content}
                )
            elif msg.tool_calls:
                messages.append(
                    {
                        "role": "assistant",
                        "content": msg.content or None,
                        "tool_calls": [
                            {
                                "id": call.id,
                                "type": "function",
                                "function": {
                                    "name": call.tool_name,
                                    "arguments": json.dumps(call.arguments),
                                },
                            }
                            for call in msg.tool_calls
                        ],
                    }
                )
            else:
                messages.append({"role": msg.role.value, "content": msg.content})
        return messages

    @staticmethod
    def _to_text_messages(history: Sequence[Message], definitions: list[dict]) -> list[dict]:
        tools_block = build_tools_prompt_block(definitions) if definitions else ""
        messages: list[dict] = []
        system_seen = False
        for msg in history:
            if msg.role is Role.SYSTEM and not system_seen:
                system_seen = True
                messages.append({"role": "system", "content": msg.content + tools_block})
            elif msg.role is Role.TOOL_RESULT:
                messages.append(
                    {
                        "role": "user",
                        "content": f"<tool_response>\n{msg.content}\n</tool_response>",
                    }
                )
            elif msg.tool_calls:
                blocks = [
                    "<tool_call>\n"
                    + json.dumps({"name": call.tool_name, "arguments": call.arguments})
                    + "\n</tool_call>"
                    for call in msg.tool_calls
                ]
                content = "\n".join(([msg.content] if msg.content else []) + blocks)
                messages.append({"role": "assistant", "content": content})
            else:
                messages.append({"role": msg.role.value, "content": msg.content})
        if not system_seen and tools_block:
            messages.insert(0, {"role": "system", "content": tools_block.lstrip()})
        return messages

    @staticmethod
    def _decide_native(message: Any) -> StepDecision:
        raw_calls = getattr(message, "tool_calls", None) or []
        content = message.content or ""
        if not raw_calls:
            if not content.strip():
                raise CompletionUnavailableError("Completion returned neither text nor tool calls")
            return FinalAnswer(text=content)

        calls = []
        seen: set[str] = set()
        for raw in raw_calls:
            try:
                arguments = json.loads(raw.function.arguments or "{}")
            except json.JSONDecodeError as e:
                raise CompletionUnavailableError(
                    f"Unparseable arguments for tool '{raw.function.name}': {e}"
                ) from e
            # Some servers omit or repeat ids; results must pair one-to-one.
            call_id = raw.id if raw.id and raw.id not in seen else _new_call_id()
            seen.add(call_id)
            calls.append(
                ToolCall(id=call_id, tool_name=raw.function.name, arguments=arguments)
            )
        return ToolRequests(calls=calls, content=content)

    @classmethod
    def parse_text_decision(cls, content: str) -> StepDecision:
        """
        Classify a text-mode response.

        Every complete ``<tool_call>`` block becomes a ToolCall; without any,
        the text (minus ``<think>`` and dangling tags) is the final answer.
        """
        blocks = _TOOL_CALL_BLOCK.findall(content)
        if not blocks:
            answer = cls.strip_tags(content).strip()
            if not answer:
                raise CompletionUnavailableError("Completion returned an empty response")
            return FinalAnswer(text=answer)

        calls = []
        for block in blocks:
            try:
                data = json.loads(block)
                name = data.get("name", "")
                arguments = data.get("arguments", {})
                if isinstance(arguments, str):
                    arguments = json.loads(arguments)
            except (json.JSONDecodeError, AttributeError) as e:
                logger.warning("Failed to parse <tool_call> JSON: %s", block[:200])
                raise CompletionUnavailableError(f"Unparseable <tool_call> block: {e}") from e
            if not name:
                raise CompletionUnavailableError("<tool_call> block without a tool name")
            calls.append(
                ToolCall(id=_new_call_id(), tool_name=name, arguments=arguments)
            )

        content_text = cls.strip_tags(content).strip()
        return ToolRequests(calls=calls, content=content_text)

    @staticmethod
    def strip_tags(content: str) -> str:
        """Remove ``<think>`` and ``<tool_call>`` blocks, complete or truncated."""
        result = re.sub(r"<think>.*?</think>", "", content, flags=re.DOTALL)
        result = re.sub(r"<tool_call>.*?</tool_call>", "", result, flags=re.DOTALL)
        result = re.sub(r"<think>.*$", "", result, flags=re.DOTALL)
        return re.sub(r"<tool_call>.*$", "", result, flags=re.DOTALL)
