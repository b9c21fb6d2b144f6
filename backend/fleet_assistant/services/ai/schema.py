"""
Pydantic models for completion output and agent results.

The completion service speaks the OpenAI chat-completions shape; these models
are what the rest of the pipeline sees instead of raw JSON.
"""
import json
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fleet_assistant.core.errors import CompletionError


class ToolInvocation(BaseModel):
    """A function call requested by the model."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    raw_arguments: str = ""
    arguments_valid: bool = True


class CompletionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str = ""
    tool_invocations: Tuple[ToolInvocation, ...] = ()
    assistant_message: Dict[str, Any] = Field(default_factory=dict)
    finish_reason: Optional[str] = None


class DomainResult(BaseModel):
    """
    Outcome of one domain agent run.

    Produced exactly once per agent invocation and never mutated afterwards.
    A failed run has success=False, no data and at least one warning.
    """

    model_config = ConfigDict(frozen=True)

    agent: str
    success: bool
    response: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)

    @classmethod
    def failure(cls, agent: str, *warnings: str) -> "DomainResult":
        return cls(agent=agent, success=False, warnings=list(warnings))


class _ChatFunction(BaseModel):
    name: str
    arguments: Optional[str] = None


class _ChatToolCall(BaseModel):
    id: str
    type: str = "function"
    function: _ChatFunction


class _ChatMessage(BaseModel):
    role: str = "assistant"
    content: Optional[str] = None
    tool_calls: Optional[List[_ChatToolCall]] = None


class _ChatChoice(BaseModel):
    message: _ChatMessage
    finish_reason: Optional[str] = None


class _ChatCompletion(BaseModel):
    choices: List[_ChatChoice] = Field(..., min_length=1)


def _parse_arguments(raw: Optional[str]) -> Tuple[Dict[str, Any], bool]:
    if not raw:
        return {}, True
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return {}, False
    if not isinstance(value, dict):
        return {}, False
    return value, True


def parse_completion_payload(payload: Dict[str, Any]) -> CompletionResult:
    """
    Validate an OpenAI-style chat completion response.

    Raises:
        CompletionError: if the payload has no usable first choice.
    """
    try:
        completion = _ChatCompletion.model_validate(payload)
    except ValidationError as exc:
        raise CompletionError(f"Invalid completion payload: {exc}") from exc

    choice = completion.choices[0]
    message = choice.message
    invocations = []
    for call in message.tool_calls or []:
        arguments, valid = _parse_arguments(call.function.arguments)
        invocations.append(
            ToolInvocation(
                id=call.id,
                name=call.function.name,
                arguments=arguments,
                raw_arguments=call.function.arguments or "",
                arguments_valid=valid,
            )
        )

    if not message.content and not invocations:
        raise CompletionError("Completion returned neither text nor tool calls")

    return CompletionResult(
        text=(message.content or "").strip(),
        tool_invocations=tuple(invocations),
        assistant_message=message.model_dump(exclude_none=True),
        finish_reason=choice.finish_reason,
    )
