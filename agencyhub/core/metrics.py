"""
Prometheus metrics for monitoring.

Metrics collected:
- API key authentication outcomes (counter)
- API key lifecycle events (counter)
- Rate limit decisions (counter)
- Audit emission failures (counter)
- Background task failures (counter)
"""

from prometheus_client import Counter, Info

# Application info
app_info = Info("agencyhub_app", "AgencyHub application information")

api_key_auth_total = Counter(
    "api_key_auth_total",
    "API key authentication attempts",
    ["outcome"],
)

api_key_lifecycle_total = Counter(
    "api_key_lifecycle_total",
    "API key lifecycle events",
    ["event"],
)

rate_limit_decisions_total = Counter(
    "rate_limit_decisions_total",
    "Rate limiter decisions",
    ["limit", "decision"],
)

audit_emit_failures_total = Counter(
    "audit_emit_failures_total",
    "Audit events that could not be written",
)

background_task_failures_total = Counter(
    "background_task_failures_total",
    "Fire-and-forget tasks that raised",
    ["task"],
)
