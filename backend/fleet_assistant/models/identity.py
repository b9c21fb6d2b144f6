"""
Caller identity established by authentication.

An identity is created once per request from the presented API key and never
changes afterwards. It is not persisted.
"""
from typing import FrozenSet

from pydantic import BaseModel, ConfigDict, Field


class CallerIdentity(BaseModel):
    """Who is calling: tenant, API key, granted scopes, environment tag."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    key_id: str
    scopes: FrozenSet[str] = Field(default_factory=frozenset)
    environment: str = "production"

    def has_scope(self, permission_id: str) -> bool:
        return permission_id in self.scopes
