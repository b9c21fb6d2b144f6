"""
Planning coordinator: classify, fan out, fan in, synthesize.

Flow for one request:
1. Keyword pre-filter picks target domains, then a planning completion call
   produces the classification rationale (also the fallback answer)
2. Every domain with a registered, permitted agent runs concurrently under a
   per-worker timeout; all workers settle before synthesis
3. Successful fragments are merged and synthesized into one answer

A planning failure ends the request with a degraded response instead of an
exception. Worker failures only ever surface as warnings.
"""
import asyncio
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from fleet_assistant.core.errors import ClassificationError
from fleet_assistant.core.logging import get_logger
from fleet_assistant.core.metrics import record_agent_run, record_domain_classified
from fleet_assistant.core.tracing import StatusCode, get_tracer
from fleet_assistant.models.identity import CallerIdentity
from fleet_assistant.models.query import QueryRequest, QueryResponse
from fleet_assistant.services.ai.agents import DomainAgent, build_default_agents
from fleet_assistant.services.ai.classification import GENERAL_DOMAIN, KeywordDomainClassifier
from fleet_assistant.services.ai.prompts import (
    PLANNING_PROMPT,
    SYNTHESIS_PROMPT,
    build_history,
    build_synthesis_message,
    build_user_message,
)
from fleet_assistant.services.ai.schema import DomainResult

logger = get_logger(__name__)

COORDINATOR_NAME = "planning"
DEGRADED_RESPONSE = "I'm sorry, I couldn't process your request right now. Please try again."
NO_SPECIALIST_DATA_WARNING = "No specialist data was available for this query"
GENERAL_DOMAIN_WARNING = "No specialist matched this query; answering from general fleet knowledge"


def _dedupe(warnings: Sequence[str]) -> List[str]:
    seen = set()
    ordered = []
    for warning in warnings:
        if warning and warning not in seen:
            seen.add(warning)
            ordered.append(warning)
    return ordered


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class PlanningCoordinator:
    name = COORDINATOR_NAME

    def __init__(
        self,
        agents: Optional[Dict[str, DomainAgent]] = None,
        completion_service=None,
        classifier: Optional[KeywordDomainClassifier] = None,
        agent_timeout_seconds: float = 30.0,
    ):
        if completion_service is None:
            from fleet_assistant.services.ai.llm_client import get_llm_client

            completion_service = get_llm_client()
        self._completion = completion_service
        self._agents: Dict[str, DomainAgent] = dict(agents) if agents is not None else build_default_agents(
            completion_service=completion_service
        )
        self._classifier = classifier or KeywordDomainClassifier()
        self.agent_timeout_seconds = agent_timeout_seconds

    @property
    def agents(self) -> Dict[str, DomainAgent]:
        return dict(self._agents)

    def register_agent(self, agent: DomainAgent) -> None:
        self._agents[agent.name] = agent

    async def handle(self, request: QueryRequest, identity: CallerIdentity) -> QueryResponse:
        """Answer one query. Always returns a well-formed response."""
        start = time.perf_counter()
        warnings: List[str] = []

        with get_tracer().start_as_current_span("fleet.classify") as span:
            domains = self._classifier.classify(request.message)
            span.set_attribute("fleet.domains", ",".join(domains))
            for domain in domains:
                record_domain_classified(domain)
            try:
                planning_analysis = await self._plan(request)
            except ClassificationError as e:
                cause = e.__cause__ or e
                span.record_exception(cause)
                span.set_status(StatusCode.ERROR, "planning failed")
                logger.error(
                    "planning_failed",
                    tenant_id=identity.tenant_id,
                    domains=domains,
                    error=str(cause),
                    error_type=type(cause).__name__,
                )
                return self._degraded_response(cause, start)

        agent_data: Dict[str, Any] = {
            COORDINATOR_NAME: {
                "analysis": planning_analysis,
                "domains": domains,
                "hasConversationHistory": bool(request.conversation_history),
                "hasAdditionalContext": bool(request.context),
            }
        }
        agents_used = [COORDINATOR_NAME]

        selected = self._select_agents(domains, identity, warnings)
        results = await self._dispatch(selected, request, identity)

        successful = [result for result in results if result.success]
        for result in results:
            warnings.extend(result.warnings)
        for result in successful:
            agents_used.append(result.agent)
            agent_data[result.agent] = {**result.data, "analysis": result.response}

        if successful:
            response_text = await self._synthesize(request, planning_analysis, successful, warnings)
        else:
            response_text = planning_analysis
            warnings.append(NO_SPECIALIST_DATA_WARNING)

        processing_time_ms = _elapsed_ms(start)
        logger.info(
            "query_completed",
            tenant_id=identity.tenant_id,
            domains=domains,
            dispatched=[agent.name for agent in selected],
            agents_used=agents_used,
            warnings=len(warnings),
            processing_time_ms=processing_time_ms,
        )
        return QueryResponse(
            response=response_text,
            agent_data=agent_data,
            agents_used=agents_used,
            warnings=_dedupe(warnings),
            processing_time_ms=processing_time_ms,
            timestamp=datetime.now(timezone.utc),
        )

    async def _plan(self, request: QueryRequest) -> str:
        """
        Ask the completion service for the classification rationale.

        Raises:
            ClassificationError: wrapping whatever the completion call raised
        """
        try:
            planning = await self._completion.complete(
                PLANNING_PROMPT,
                build_history(request),
                build_user_message(request),
                agent=COORDINATOR_NAME,
            )
        except Exception as e:
            raise ClassificationError(f"Query planning failed: {e}") from e
        return planning.text

    def _select_agents(self, domains: Sequence[str], identity: CallerIdentity, warnings: List[str]) -> List[DomainAgent]:
        selected: List[DomainAgent] = []
        for domain in domains:
            if domain == GENERAL_DOMAIN:
                warnings.append(GENERAL_DOMAIN_WARNING)
                continue
            agent = self._agents.get(domain)
            if agent is None:
                warnings.append(f"No specialist is registered for the '{domain}' domain")
                continue
            if not identity.has_scope(agent.permission):
                logger.info("agent_not_permitted", tenant_id=identity.tenant_id, agent=agent.name)
                warnings.append(f"Not permitted to use the {domain} specialist")
                continue
            if agent not in selected:
                selected.append(agent)
        return selected

    async def _dispatch(
        self,
        agents: Sequence[DomainAgent],
        request: QueryRequest,
        identity: CallerIdentity,
    ) -> List[DomainResult]:
        if not agents:
            return []
        with get_tracer().start_as_current_span("fleet.dispatch") as span:
            span.set_attribute("fleet.agents", ",".join(agent.name for agent in agents))
            results = await asyncio.gather(*(self._run_agent(agent, request, identity) for agent in agents))
            span.set_attribute("fleet.failed_agents", sum(1 for result in results if not result.success))
        return list(results)

    async def _run_agent(self, agent: DomainAgent, request: QueryRequest, identity: CallerIdentity) -> DomainResult:
        """Run one worker; timeouts and stray exceptions become failed results."""
        try:
            return await asyncio.wait_for(agent.run(request, identity), timeout=self.agent_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "agent_deadline_exceeded",
                tenant_id=identity.tenant_id,
                agent=agent.name,
                timeout_seconds=self.agent_timeout_seconds,
            )
            record_agent_run(agent.name, False, self.agent_timeout_seconds)
            return DomainResult.failure(
                agent.name,
                f"The {agent.name} specialist timed out after {self.agent_timeout_seconds:g}s",
            )
        except Exception as e:
            logger.error(
                "agent_crashed",
                tenant_id=identity.tenant_id,
                agent=agent.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return DomainResult.failure(agent.name, f"The {agent.name} specialist could not complete its analysis")

    async def _synthesize(
        self,
        request: QueryRequest,
        planning_analysis: str,
        results: Sequence[DomainResult],
        warnings: List[str],
    ) -> str:
        with get_tracer().start_as_current_span("fleet.synthesize") as span:
            span.set_attribute("fleet.fragments", len(results))
            try:
                completion = await self._completion.complete(
                    SYNTHESIS_PROMPT,
                    [],
                    build_synthesis_message(request, planning_analysis, results),
                    agent="synthesis",
                )
                return completion.text
            except Exception as e:
                span.record_exception(e)
                span.set_status(StatusCode.ERROR, "synthesis failed")
                logger.warning("synthesis_failed", error=str(e), error_type=type(e).__name__)
                warnings.append("Could not combine specialist answers; showing the planning analysis")
                return planning_analysis

    def _degraded_response(self, error: Exception, start: float) -> QueryResponse:
        return QueryResponse(
            response=DEGRADED_RESPONSE,
            agent_data={COORDINATOR_NAME: {"error": str(error), "errorType": type(error).__name__}},
            agents_used=[COORDINATOR_NAME],
            warnings=["Query planning failed; no specialists were consulted"],
            processing_time_ms=_elapsed_ms(start),
            timestamp=datetime.now(timezone.utc),
            success=False,
        )


_planning_coordinator: Optional[PlanningCoordinator] = None


def get_planning_coordinator() -> PlanningCoordinator:
    global _planning_coordinator
    if _planning_coordinator is None:
        _planning_coordinator = PlanningCoordinator(
            agent_timeout_seconds=float(os.getenv("FLEET_AGENT_TIMEOUT_SECONDS", "30") or "30"),
        )
    return _planning_coordinator
