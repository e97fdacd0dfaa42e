"""
Report cache.

Best-effort Redis cache for aggregate ledger reports. Never a source of
truth: any Redis failure is a cache miss, and repeated failures open a
circuit breaker so requests stop waiting on a dead server.

Keys are built from (tenant, report kind, params). Invalidation is driven
by typed events rather than key patterns: every write that can change an
aggregate publishes a LedgerEvent and the cache drops that tenant's
reports through a per-tenant index set.
"""

import enum
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from redis.exceptions import RedisError

from backend.app.core.config import settings
from backend.app.core.redis_client import get_redis_client
from backend.app.core.reliability import CircuitBreaker, CircuitOpenError, cache_circuit_breaker

logger = logging.getLogger(__name__)

KEY_PREFIX = "ledger-report"


class ReportKind(str, enum.Enum):
    TRIAL_BALANCE = "trial_balance"


@dataclass(frozen=True)
class ReportKey:
    """Identity of one cached report."""
    user_id: int
    kind: ReportKind
    params: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def build(cls, user_id: int, kind: ReportKind, **params) -> "ReportKey":
        return cls(user_id=user_id, kind=kind, params=tuple(sorted(params.items())))

    def render(self) -> str:
        digest = hashlib.sha1(
            json.dumps(self.params, default=str, separators=(",", ":")).encode("utf-8")
        ).hexdigest()[:16]
        return f"{KEY_PREFIX}:{self.user_id}:{self.kind.value}:{digest}"

    @staticmethod
    def index_for(user_id: int) -> str:
        return f"{KEY_PREFIX}-index:{user_id}"


@dataclass(frozen=True)
class LedgerEvent:
    user_id: int


@dataclass(frozen=True)
class PartyMutated(LedgerEvent):
    """Entries of one party were added, changed, deleted, settled or moved."""
    party_name: str = ""


@dataclass(frozen=True)
class PartiesRemoved(LedgerEvent):
    party_names: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class LedgerRebuilt(LedgerEvent):
    """Balances or classifications were rebuilt for the whole tenant."""


@dataclass(frozen=True)
class CompanySettingsChanged(LedgerEvent):
    """Company name changed, which re-categorises company self-account rows."""
    company_name: Optional[str] = None


class ReportCache:

    def __init__(self, breaker: CircuitBreaker, ttl_seconds: int):
        self.breaker = breaker
        self.ttl_seconds = ttl_seconds

    async def _call(self, method: str, *args, **kwargs):
        client = get_redis_client()
        return await self.breaker.call(getattr(client, method), *args, **kwargs)

    async def get(self, key: ReportKey) -> Optional[Dict[str, Any]]:
        try:
            raw = await self._call("get", key.render())
        except CircuitOpenError:
            return None
        except (RedisError, OSError) as exc:
            logger.warning("Report cache read failed for %s: %s", key.render(), exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Discarding undecodable cache entry %s", key.render())
            return None

    async def set(self, key: ReportKey, payload: Dict[str, Any], ttl_seconds: Optional[int] = None) -> bool:
        ttl = ttl_seconds or self.ttl_seconds
        rendered = key.render()
        index_key = ReportKey.index_for(key.user_id)
        try:
            await self._call("set", rendered, json.dumps(payload), ex=ttl)
            await self._call("sadd", index_key, rendered)
            await self._call("expire", index_key, ttl)
        except CircuitOpenError:
            return False
        except (RedisError, OSError) as exc:
            logger.warning("Report cache write failed for %s: %s", rendered, exc)
            return False
        return True

    async def invalidate_user(self, user_id: int) -> int:
        """Drop every cached report of one tenant. Returns the number of keys removed."""
        index_key = ReportKey.index_for(user_id)
        try:
            members = await self._call("smembers", index_key)
            keys = sorted(members or ())
            await self._call("delete", *keys, index_key)
        except CircuitOpenError:
            logger.error("Report cache unavailable, reports of user %s stay stale until TTL", user_id)
            return 0
        except (RedisError, OSError) as exc:
            logger.error("Report cache invalidation failed for user %s: %s", user_id, exc)
            return 0
        return len(keys)

    async def publish(self, event: LedgerEvent) -> int:
        """Handle a ledger event; every event kind affects the tenant's trial balance."""
        removed = await self.invalidate_user(event.user_id)
        logger.debug("%s invalidated %d cached report(s)", type(event).__name__, removed)
        return removed


report_cache = ReportCache(cache_circuit_breaker, settings.cache_ttl_seconds)
