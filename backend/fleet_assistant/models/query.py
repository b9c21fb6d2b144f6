"""
Request and response models for the fleet query endpoint.

Field names are snake_case in Python and camelCase on the wire
(`conversationHistory`, `agentData`, `agentsUsed`, `processingTimeMs`).
Both spellings are accepted on input.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConversationMessage(CamelModel):
    """One prior turn of the conversation, supplied by the client."""

    role: str
    content: str
    timestamp: Optional[datetime] = None

    @field_validator("role")
    @classmethod
    def normalize_role(cls, value: str) -> str:
        return value.lower().strip()


class QueryRequest(CamelModel):
    """Natural-language fleet question plus optional history and context."""

    message: str = Field(..., min_length=1, max_length=4000)
    conversation_history: List[ConversationMessage] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value


class QueryResponse(CamelModel):
    """
    Aggregated answer for one query.

    `agent_data` is keyed by the name of every agent listed in `agents_used`;
    the two always cover the same set of agents.
    """

    response: str
    agent_data: Dict[str, Any] = Field(default_factory=dict)
    agents_used: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    processing_time_ms: float = 0.0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    success: bool = True


class UsageResponse(CamelModel):
    """Quota and usage snapshot for the calling tenant."""

    tenant_id: str
    tier: str
    requests_this_minute: int
    requests_today: int
    in_flight: int
    requests_per_minute_limit: int
    requests_per_day_limit: int
    max_concurrent_requests: int
    total_requests: int
    total_errors: int
    error_rate: float
    average_response_time_ms: float
