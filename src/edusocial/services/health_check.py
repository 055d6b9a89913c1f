"""
Health Check Service
Database and key-value store checks aggregated into one status
"""
import logging
import time
from typing import Dict, Any, Optional, List
from enum import Enum
from datetime import datetime

from sqlalchemy import text

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health status levels"""
    OK = "ok"
    DEGRADED = "degraded"
    DOWN = "down"


class ComponentHealth:
    """Health information for a single component"""

    def __init__(
        self,
        name: str,
        status: HealthStatus,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
        response_time_ms: Optional[float] = None
    ):
        self.name = name
        self.status = status
        self.message = message
        self.details = details or {}
        self.response_time_ms = response_time_ms
        self.checked_at = datetime.utcnow().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "status": self.status.value,
            "message": self.message,
            "checked_at": self.checked_at
        }
        if self.response_time_ms is not None:
            result["response_time_ms"] = round(self.response_time_ms, 2)
        if self.details:
            result["details"] = self.details
        return result


class HealthChecker:
    """
    Checks the components the billing and engagement paths depend on

    The database is required; the key-value store degrades the service
    (engagement buffering) but does not take it down.
    """

    def __init__(self, session_factory, kv_store_factory):
        self.session_factory = session_factory
        self.kv_store_factory = kv_store_factory

    def check_database(self) -> ComponentHealth:
        start_time = time.time()
        db = None
        try:
            db = self.session_factory()
            result = db.execute(text("SELECT 1")).scalar()
            response_time = (time.time() - start_time) * 1000
            if result == 1:
                return ComponentHealth(
                    name="database",
                    status=HealthStatus.OK,
                    message="Database is accessible",
                    response_time_ms=response_time,
                )
            return ComponentHealth(
                name="database",
                status=HealthStatus.DEGRADED,
                message="Database query returned unexpected result",
                response_time_ms=response_time,
            )
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return ComponentHealth(
                name="database",
                status=HealthStatus.DOWN,
                message="Database is not accessible",
                response_time_ms=(time.time() - start_time) * 1000,
                details={"error_type": type(e).__name__},
            )
        finally:
            if db is not None:
                db.close()

    def check_kv_store(self) -> ComponentHealth:
        from .engagement_queue import PENDING_KEY
        from .redis_cache import InMemoryKeyValueStore

        start_time = time.time()
        try:
            store = self.kv_store_factory()
            pending = store.hlen(PENDING_KEY)
            backend = "memory" if isinstance(store, InMemoryKeyValueStore) else "redis"
            return ComponentHealth(
                name="kv_store",
                status=HealthStatus.OK,
                message=f"Key-value store ({backend}) is accessible",
                response_time_ms=(time.time() - start_time) * 1000,
                details={"backend": backend, "pending_engagement": pending},
            )
        except Exception as e:
            logger.warning(f"Key-value store health check failed: {e}")
            return ComponentHealth(
                name="kv_store",
                status=HealthStatus.DEGRADED,
                message="Key-value store is not accessible",
                response_time_ms=(time.time() - start_time) * 1000,
                details={"error_type": type(e).__name__},
            )

    def check_all(self) -> Dict[str, Any]:
        components: List[ComponentHealth] = [self.check_database(), self.check_kv_store()]

        if any(c.status == HealthStatus.DOWN for c in components):
            overall = HealthStatus.DOWN
        elif any(c.status == HealthStatus.DEGRADED for c in components):
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.OK

        return {
            "status": overall.value,
            "components": {c.name: c.to_dict() for c in components},
            "checked_at": datetime.utcnow().isoformat(),
        }
