"""
Shared shape of the domain specialist agents.

A DomainAgent declares the capabilities it needs, resolves the tenant's
matching integration tools, and runs a bounded tool-calling conversation
with the completion service. `run` never raises: every failure becomes a
DomainResult with success=False and a warning.
"""
import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from fleet_assistant.core.errors import UpstreamTimeoutError, WorkerError
from fleet_assistant.core.logging import get_logger
from fleet_assistant.core.metrics import record_agent_run
from fleet_assistant.core.tracing import get_tracer
from fleet_assistant.models.identity import CallerIdentity
from fleet_assistant.models.query import QueryRequest
from fleet_assistant.services.ai.prompts import build_history, build_user_message
from fleet_assistant.services.ai.schema import DomainResult, ToolInvocation
from fleet_assistant.services.auth.permissions import agent_permission
from fleet_assistant.services.plugins.models import PluginResolution

logger = get_logger(__name__)

MAX_TOOL_RESULT_CHARS = 8000
TOOL_TIMEOUT_SECONDS = 15.0


@dataclass
class AgentContext:
    """Per-call execution context, bound to one tenant."""

    tenant_id: str
    identity: CallerIdentity
    request: QueryRequest
    resolution: PluginResolution
    warnings: List[str] = field(default_factory=list)
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)


class DomainAgent:
    name: str = ""
    agent_type: str = ""
    capabilities: FrozenSet[str] = frozenset()
    analysis_capabilities: Tuple[str, ...] = ()
    system_prompt: str = ""
    max_tool_rounds: int = 3

    def __init__(self, completion_service=None, plugin_resolver=None):
        if completion_service is None:
            from fleet_assistant.services.ai.llm_client import get_llm_client

            completion_service = get_llm_client()
        if plugin_resolver is None:
            from fleet_assistant.services.plugins.resolver import get_plugin_resolver

            plugin_resolver = get_plugin_resolver()
        self._completion = completion_service
        self._resolver = plugin_resolver

    @property
    def permission(self) -> str:
        return agent_permission(self.name)

    async def run(self, request: QueryRequest, identity: CallerIdentity) -> DomainResult:
        start = time.perf_counter()
        warnings: List[str] = []

        with get_tracer().start_as_current_span(f"fleet.agent.{self.name}") as span:
            span.set_attribute("tenant.id", identity.tenant_id)
            try:
                resolution = await self._resolver.resolve(identity.tenant_id, self.capabilities)
                context = AgentContext(
                    tenant_id=identity.tenant_id,
                    identity=identity,
                    request=request,
                    resolution=resolution,
                    warnings=warnings,
                )
                warnings.extend(resolution.warnings)
                if not resolution.bundles:
                    warnings.append(f"No integrations available for the {self.name} specialist")

                answer = await self._converse(context)
                if not answer.strip():
                    raise WorkerError(self.name, "completion returned no answer")
                result = DomainResult(
                    agent=self.name,
                    success=True,
                    response=answer,
                    data=self.build_data(context),
                    warnings=warnings,
                )
            except UpstreamTimeoutError as e:
                logger.warning("agent_timeout", agent=self.name, error=str(e))
                warnings.append(f"The {self.name} specialist timed out")
                result = DomainResult.failure(self.name, *warnings)
            except Exception as e:
                logger.warning(
                    "agent_failed",
                    agent=self.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                warnings.append(f"The {self.name} specialist could not complete its analysis")
                result = DomainResult.failure(self.name, *warnings)

            span.set_attribute("agent.success", result.success)

        duration = time.perf_counter() - start
        record_agent_run(self.name, result.success, duration)
        logger.info(
            "agent_completed",
            agent=self.name,
            success=result.success,
            integrations=result.data.get("availableIntegrations", []),
            warnings=len(result.warnings),
            duration_ms=int(duration * 1000),
        )
        return result

    async def _converse(self, context: AgentContext) -> str:
        """Ask the model, running requested tools for at most max_tool_rounds rounds."""
        history = build_history(context.request)
        user_message = build_user_message(context.request)
        manifest = context.resolution.tool_manifest()
        extra_messages: List[Dict[str, Any]] = []

        for _ in range(self.max_tool_rounds):
            completion = await self._completion.complete(
                self.system_prompt,
                history,
                user_message,
                manifest,
                agent=self.name,
                extra_messages=extra_messages,
            )
            if not completion.tool_invocations or not manifest:
                return completion.text

            extra_messages.append(completion.assistant_message)
            for invocation in completion.tool_invocations:
                content = await self._invoke_tool(context, invocation)
                extra_messages.append({
                    "role": "tool",
                    "tool_call_id": invocation.id,
                    "content": content,
                })

        context.warnings.append(
            f"The {self.name} specialist reached its tool call limit; the answer may be incomplete"
        )
        completion = await self._completion.complete(
            self.system_prompt,
            history,
            user_message,
            manifest,
            agent=self.name,
            extra_messages=extra_messages,
            tool_choice="none",
        )
        return completion.text

    async def _invoke_tool(self, context: AgentContext, invocation: ToolInvocation) -> str:
        """Run one requested tool; failures are reported back to the model, never raised."""
        tool = context.resolution.find_tool(invocation.name)
        record: Dict[str, Any] = {"tool": invocation.name, "success": False}
        context.tool_calls.append(record)

        if tool is None:
            context.warnings.append(f"Requested tool {invocation.name} is not available")
            return json.dumps({"error": f"Unknown tool {invocation.name}"})
        if not invocation.arguments_valid:
            return json.dumps({"error": "Tool arguments were not a valid JSON object"})

        try:
            output = await asyncio.wait_for(tool.handler(invocation.arguments), timeout=TOOL_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            context.warnings.append(f"Integration call {invocation.name} timed out")
            return json.dumps({"error": "Tool call timed out"})
        except Exception as e:
            logger.warning(
                "agent_tool_failed",
                agent=self.name,
                tool=invocation.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            context.warnings.append(f"Integration call {invocation.name} failed")
            return json.dumps({"error": f"Tool call failed: {type(e).__name__}"})

        record["success"] = True
        return json.dumps(output, default=str)[:MAX_TOOL_RESULT_CHARS]

    def domain_context(self, request: QueryRequest) -> Dict[str, Any]:
        """Domain-specific entries for the data bag; overridden by variants."""
        return {}

    def build_data(self, context: AgentContext) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "agentType": self.agent_type,
            "availableIntegrations": context.resolution.plugin_keys,
            "analysisCapabilities": list(self.analysis_capabilities),
            "queryContext": {
                "originalMessage": context.request.message,
                "hasContext": bool(context.request.context),
                "tenantId": context.tenant_id,
            },
            "toolCalls": list(context.tool_calls),
        }
        data.update(self.domain_context(context.request))
        return data


def first_context_value(request: QueryRequest, *keys: str) -> Optional[Any]:
    """First present value among `keys` in the request context."""
    for key in keys:
        value = request.context.get(key)
        if value not in (None, ""):
            return value
    return None
