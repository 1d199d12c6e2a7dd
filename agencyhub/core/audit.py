"""
Audit logging for API key operations.

Events are written as structured log lines to the configured sink.
Writing an audit event never fails the operation that produced it.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from fastapi import Request

from agencyhub.core.metrics import audit_emit_failures_total
from agencyhub.core.middleware import get_client_ip
from agencyhub.utils.datetime import utcnow

# Used only when the structured sink itself fails
fallback_logger = logging.getLogger(__name__)


class AuditEventKind(str, Enum):
    """Categories of audit events."""

    KEY_CREATED = "API_KEY_CREATED"
    KEY_DELETED = "API_KEY_DELETED"
    KEY_USED = "API_KEY_USED"
    KEY_AUTH_FAILED = "API_KEY_AUTH_FAILED"

    @property
    def is_failure(self) -> bool:
        return self is AuditEventKind.KEY_AUTH_FAILED


@dataclass(frozen=True)
class ClientInfo:
    """Request metadata attached to audit events."""

    ip_address: str = "unknown"
    user_agent: str = "unknown"


def client_info_from_request(request: Request) -> ClientInfo:
    """Extract origin address and user agent, preferring middleware state."""
    ip_address = getattr(request.state, "client_ip", None) or get_client_ip(request)
    user_agent = (
        getattr(request.state, "user_agent", None)
        or request.headers.get("user-agent")
        or "unknown"
    )
    return ClientInfo(ip_address=ip_address, user_agent=user_agent)


@dataclass(frozen=True)
class AuditEvent:
    """Immutable record of one authentication or key-lifecycle occurrence."""

    kind: AuditEventKind
    subject_id: str
    key_id: str | None = None
    key_name: str | None = None
    scope_id: str | None = None
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    reason: str | None = None
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def build(
        cls,
        kind: AuditEventKind,
        subject_id: str | None,
        client: ClientInfo | None = None,
        **fields: Any,
    ) -> "AuditEvent":
        client = client or ClientInfo()
        return cls(
            kind=kind,
            subject_id=subject_id or "unknown",
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            **fields,
        )

    def to_log_fields(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["timestamp"] = self.timestamp.isoformat()
        return {key: value for key, value in data.items() if value is not None}


class AuditEmitter:
    """
    Append-only audit sink.

    Failure events go out at WARNING so alerting can key on them;
    everything else at INFO.
    """

    def __init__(self, logger: Any | None = None) -> None:
        self._logger = logger or structlog.get_logger("agencyhub.audit")

    def emit(self, event: AuditEvent) -> None:
        try:
            fields = event.to_log_fields()
            if event.kind.is_failure:
                self._logger.warning("api_key_audit", **fields)
            else:
                self._logger.info("api_key_audit", **fields)
        except Exception:
            audit_emit_failures_total.inc()
            fallback_logger.error(
                "Failed to write audit event %s", event.kind.value, exc_info=True
            )
