"""
Async completion service client.

Design constraints:
- No vendor SDKs; plain httpx against an OpenAI-compatible /chat/completions API
- Every call goes through a circuit breaker and carries an explicit timeout
- Tool manifests use the OpenAI `tools` format

Environment configuration:
- LLM_API_BASE: Base URL for API (default: https://api.openai.com/v1)
- LLM_API_KEY: API key / bearer token
- LLM_MODEL: Model name (default: gpt-4o)
- LLM_TIMEOUT_SECONDS: Request timeout in seconds (default: 20)
"""
import os
import time
from typing import Any, Dict, List, Optional, Sequence

import httpx

from fleet_assistant.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from fleet_assistant.core.errors import CompletionError, UpstreamTimeoutError
from fleet_assistant.core.logging import get_logger
from fleet_assistant.core.metrics import record_llm_error, record_llm_request, record_llm_tokens
from fleet_assistant.services.ai.schema import CompletionResult, parse_completion_payload

logger = get_logger(__name__)


class LLMClient:
    """Async HTTP client for chat completions."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        model: str,
        timeout_seconds: float = 20.0,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.circuit_breaker = CircuitBreaker(
            name="llm_completion",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
        )

    async def _post(self, path: str, json_payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST and return the decoded body; non-2xx responses raise and count against the breaker."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(f"{self.api_base}{path}", headers=headers, json=json_payload)
        response.raise_for_status()
        return response.json()

    async def complete(
        self,
        system_prompt: str,
        history: Sequence[Dict[str, str]],
        user_message: str,
        tool_manifest: Optional[List[Dict[str, Any]]] = None,
        *,
        agent: str,
        extra_messages: Optional[Sequence[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        max_tokens: int = 800,
        temperature: float = 0.2,
    ) -> CompletionResult:
        """
        Run one chat completion.

        Args:
            system_prompt: Role instructions for the model
            history: Prior user/assistant turns, oldest first
            user_message: The current question
            tool_manifest: Function specs the model may call; omitted when empty
            agent: Logical caller name, used for metrics and logs
            extra_messages: Messages appended after the user turn (tool round-trips)
            tool_choice: Overrides the default "auto" tool choice

        Raises:
            CompletionError: API key missing or response unusable
            UpstreamTimeoutError: the call exceeded LLM_TIMEOUT_SECONDS
            CircuitBreakerOpenError / httpx.HTTPError: service unavailable
        """
        if not self.api_key:
            record_llm_error(agent, "missing_api_key")
            raise CompletionError("LLM API key not configured")

        messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        messages.extend(history)
        messages.append({"role": "user", "content": user_message})
        messages.extend(extra_messages or [])

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tool_manifest:
            payload["tools"] = list(tool_manifest)
            payload["tool_choice"] = tool_choice or "auto"

        start = time.time()
        try:
            data = await self.circuit_breaker.call_async(
                self._post,
                "/chat/completions",
                json_payload=payload,
            )
        except CircuitBreakerOpenError:
            record_llm_error(agent, "circuit_open")
            logger.warning("llm_circuit_open", agent=agent)
            raise
        except httpx.TimeoutException as exc:
            record_llm_error(agent, "timeout")
            logger.warning(
                "llm_timeout",
                agent=agent,
                timeout_seconds=self.timeout_seconds,
                error_type=type(exc).__name__,
            )
            raise UpstreamTimeoutError("completion", self.timeout_seconds) from exc
        except httpx.HTTPError as exc:
            record_llm_error(agent, "http_error")
            logger.warning(
                "llm_http_error",
                agent=agent,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            record_llm_request(agent, self.model, time.time() - start)

        usage = data.get("usage") or {}
        record_llm_tokens(
            agent=agent,
            model=self.model,
            input_tokens=int(usage.get("prompt_tokens") or 0),
            output_tokens=int(usage.get("completion_tokens") or 0),
        )

        try:
            return parse_completion_payload(data)
        except CompletionError as exc:
            record_llm_error(agent, "invalid_response")
            logger.warning("llm_invalid_response", agent=agent, error=str(exc))
            raise


_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Global completion client configured from the environment."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient(
            api_base=os.getenv("LLM_API_BASE", "https://api.openai.com/v1"),
            api_key=os.getenv("LLM_API_KEY"),
            model=os.getenv("LLM_MODEL", "gpt-4o"),
            timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "20") or "20"),
        )
    return _llm_client
