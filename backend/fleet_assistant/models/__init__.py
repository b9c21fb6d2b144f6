"""Pydantic models for the HTTP boundary and caller identity."""

from .identity import CallerIdentity
from .query import ConversationMessage, QueryRequest, QueryResponse, UsageResponse

__all__ = [
    "CallerIdentity",
    "ConversationMessage",
    "QueryRequest",
    "QueryResponse",
    "UsageResponse",
]
