"""
Request context using contextvars.

Provides task-safe context storage for:
- Request ID
- User ID
- Scope (sub-agency) ID
- Client IP
"""

import contextvars
from typing import Any

# Context variables
request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
user_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "user_id", default=None
)
scope_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "scope_id", default=None
)
client_ip_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "client_ip", default=None
)


def set_request_context(
    request_id: str | None = None,
    user_id: str | None = None,
    scope_id: str | None = None,
    client_ip: str | None = None,
) -> None:
    """Set request context variables."""
    if request_id:
        request_id_var.set(request_id)
    if user_id:
        user_id_var.set(user_id)
    if scope_id:
        scope_id_var.set(scope_id)
    if client_ip:
        client_ip_var.set(client_ip)


def get_request_context() -> dict[str, Any]:
    """Get the populated request context as a dictionary."""
    context = {
        "request_id": request_id_var.get(),
        "user_id": user_id_var.get(),
        "scope_id": scope_id_var.get(),
        "client_ip": client_ip_var.get(),
    }
    return {key: value for key, value in context.items() if value is not None}


def clear_request_context() -> None:
    """Clear all context variables."""
    request_id_var.set(None)
    user_id_var.set(None)
    scope_id_var.set(None)
    client_ip_var.set(None)
