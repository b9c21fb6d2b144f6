"""
API key authentication.

Keys look like `fa_<env>_<24 random chars>` and are stored only as SHA-256
hashes. Callers present them as:
- Authorization: Bearer <key>
- Authorization: ApiKey <key>
- X-API-Key: <key>
"""
import hashlib
import secrets
import string
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from fleet_assistant.core.errors import AuthenticationError
from fleet_assistant.core.logging import get_logger
from fleet_assistant.models.identity import CallerIdentity
from fleet_assistant.services.auth.permissions import resolve_scopes

logger = get_logger(__name__)

KEY_ALPHABET = string.ascii_letters + string.digits
KEY_RANDOM_LENGTH = 24


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def extract_api_key(headers: Mapping[str, str]) -> Optional[str]:
    """Pull the presented API key out of request headers, or None."""
    auth_header = headers.get("authorization") or headers.get("Authorization")
    if auth_header:
        parts = auth_header.split(" ", 1)
        if len(parts) == 2 and parts[0].lower() in ("bearer", "apikey") and parts[1].strip():
            return parts[1].strip()

    api_key = headers.get("x-api-key") or headers.get("X-API-Key")
    if api_key and api_key.strip():
        return api_key.strip()
    return None


class ApiKeyRecord(BaseModel):
    key_id: str
    key_hash: str
    tenant_id: str
    name: str = ""
    environment: str = "production"
    scopes: FrozenSet[str] = Field(default_factory=frozenset)
    is_active: bool = True
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        if self.expires_at is None:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at


class ApiKeyAuthenticator:
    """Validates presented keys against the registered hashes."""

    def __init__(self) -> None:
        self._keys_by_hash: Dict[str, ApiKeyRecord] = {}

    def register(self, record: ApiKeyRecord) -> None:
        self._keys_by_hash[record.key_hash] = record

    def register_raw_key(
        self,
        raw_key: str,
        tenant_id: str,
        scopes: Iterable[str],
        key_id: Optional[str] = None,
        name: str = "",
        environment: str = "production",
        expires_at: Optional[datetime] = None,
    ) -> ApiKeyRecord:
        """Register a known plaintext key (used when seeding); only its hash is kept."""
        record = ApiKeyRecord(
            key_id=key_id or f"key_{secrets.token_hex(6)}",
            key_hash=hash_api_key(raw_key),
            tenant_id=tenant_id,
            name=name,
            environment=environment,
            scopes=resolve_scopes(scopes),
            expires_at=expires_at,
        )
        self.register(record)
        return record

    def generate_api_key(
        self,
        tenant_id: str,
        name: str,
        scopes: Iterable[str],
        environment: str = "production",
        expires_at: Optional[datetime] = None,
    ) -> Tuple[str, ApiKeyRecord]:
        """
        Issue a new key for a tenant.

        Returns:
            (plaintext key, stored record). The plaintext is not retained.
        """
        env_tag = "prod" if environment == "production" else environment[:4]
        random_part = "".join(secrets.choice(KEY_ALPHABET) for _ in range(KEY_RANDOM_LENGTH))
        raw_key = f"fa_{env_tag}_{random_part}"
        record = self.register_raw_key(
            raw_key,
            tenant_id=tenant_id,
            scopes=scopes,
            name=name,
            environment=environment,
            expires_at=expires_at,
        )
        logger.info("api_key_generated", tenant_id=tenant_id, key_id=record.key_id, environment=environment)
        return raw_key, record

    def revoke(self, key_id: str, tenant_id: Optional[str] = None) -> bool:
        """Deactivate a key; with `tenant_id`, only a key belonging to that tenant."""
        for key_hash, record in self._keys_by_hash.items():
            if record.key_id == key_id and tenant_id in (None, record.tenant_id):
                self._keys_by_hash[key_hash] = record.model_copy(update={"is_active": False})
                logger.info("api_key_revoked", key_id=key_id, tenant_id=record.tenant_id)
                return True
        return False

    def list_keys(self, tenant_id: str) -> List[ApiKeyRecord]:
        return sorted(
            (record for record in self._keys_by_hash.values() if record.tenant_id == tenant_id),
            key=lambda record: record.key_id,
        )

    async def authenticate(self, raw_key: Optional[str]) -> CallerIdentity:
        """
        Turn a presented key into a CallerIdentity.

        Raises:
            AuthenticationError: missing, unknown, revoked or expired key
        """
        if not raw_key:
            raise AuthenticationError("API key required")

        record = self._keys_by_hash.get(hash_api_key(raw_key))
        if record is None:
            logger.warning("authentication_failed", reason="unknown_key")
            raise AuthenticationError("Invalid API key")
        if not record.is_active:
            logger.warning("authentication_failed", reason="revoked", key_id=record.key_id)
            raise AuthenticationError("API key has been revoked")

        now = datetime.now(timezone.utc)
        if record.is_expired(now):
            logger.warning("authentication_failed", reason="expired", key_id=record.key_id)
            raise AuthenticationError("API key has expired")

        self._keys_by_hash[record.key_hash] = record.model_copy(update={"last_used_at": now})
        return CallerIdentity(
            tenant_id=record.tenant_id,
            key_id=record.key_id,
            scopes=record.scopes,
            environment=record.environment,
        )


_authenticator: Optional[ApiKeyAuthenticator] = None


def get_authenticator() -> ApiKeyAuthenticator:
    global _authenticator
    if _authenticator is None:
        _authenticator = ApiKeyAuthenticator()
    return _authenticator
