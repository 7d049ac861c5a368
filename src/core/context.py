"""Request context management using contextvars.

Each request gets a unique ID plus the caller and, for reading endpoints, the
material being read. Values are visible anywhere in the call stack (and in
every log line) without passing them explicitly.
"""

from contextvars import ContextVar
from typing import Any
from uuid import UUID, uuid4


# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
material_id_var: ContextVar[str | None] = ContextVar("material_id", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)

_OPTIONAL_VARS: dict[str, ContextVar[str | None]] = {
    "user_id": user_id_var,
    "material_id": material_id_var,
    "trace_id": trace_id_var,
}


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID for the current context.

    Args:
        request_id: Optional request ID. If not provided, generates a new one.

    Returns:
        The request ID that was set.
    """
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def _as_str(value: str | UUID | None) -> str | None:
    return str(value) if value is not None else None


def set_user_id(user_id: str | UUID | None) -> None:
    """Set the authenticated caller for the current context."""
    user_id_var.set(_as_str(user_id))


def set_material_id(material_id: str | UUID | None) -> None:
    """Set the material being read in the current context."""
    material_id_var.set(_as_str(material_id))


def set_trace_id(trace_id: str | None) -> None:
    """Set the trace ID taken from distributed tracing headers."""
    trace_id_var.set(trace_id)


def get_context() -> dict[str, Any]:
    """Get all non-empty context variables as a dictionary."""
    context: dict[str, Any] = {}

    request_id = get_request_id()
    if request_id:
        context["request_id"] = request_id

    for name, var in _OPTIONAL_VARS.items():
        value = var.get()
        if value:
            context[name] = value

    return context


def clear_context() -> None:
    """Clear all context variables.

    Called at the end of each request to prevent leakage between requests.
    """
    request_id_var.set("")
    for var in _OPTIONAL_VARS.values():
        var.set(None)
