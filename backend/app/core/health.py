"""
Health check aggregation — health probe for the chat backend.

Checks:
    • Webhook configuration (endpoint URL well-formed)
    • Delivery policy (attempt budget, delay, timeout)

The webhook itself is not called: a probe request would reach the
conversational backend as a real chat turn.

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from urllib.parse import urlsplit

from backend.app.core.config import settings

if TYPE_CHECKING:
    from backend.app.chat.webhook_client import DeliveryClient

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_webhook_config(endpoint_url: str) -> ComponentHealth:
    """Check the webhook URL is an absolute http(s) URL."""
    comp = ComponentHealth(name="webhook")
    start = time.monotonic()

    parts = urlsplit(endpoint_url)
    if parts.scheme in ("http", "https") and parts.netloc:
        comp.status = HealthStatus.HEALTHY
        comp.message = "Webhook endpoint configured"
        comp.details = {"host": parts.netloc}
        if parts.scheme == "http" and settings.is_production:
            comp.status = HealthStatus.DEGRADED
            comp.message = "Webhook endpoint is not using TLS"
    else:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = f"Invalid webhook URL: {endpoint_url!r}"

    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_delivery_client(client: Optional["DeliveryClient"]) -> ComponentHealth:
    """Check the delivery client exists and report its retry policy."""
    comp = ComponentHealth(name="delivery_client")
    start = time.monotonic()

    if client is None:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Delivery client not initialised"
    else:
        comp.status = HealthStatus.HEALTHY
        comp.message = "Delivery client ready"
        comp.details = {
            "max_attempts": client.policy.max_attempts,
            "retry_delay_seconds": client.policy.delay_seconds,
            "timeout_seconds": client.timeout_seconds,
        }

    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def run_health_check(client: Optional["DeliveryClient"] = None) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    endpoint_url = client.endpoint_url if client is not None else settings.WEBHOOK_URL
    checks = [
        check_webhook_config(endpoint_url),
        check_delivery_client(client),
    ]

    for coro in checks:
        comp = await coro
        report.components.append(comp)

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    if report.status is not HealthStatus.HEALTHY:
        logger.warning("Health check %s", report.status.value)

    return report
