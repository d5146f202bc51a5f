"""Task ID context for log correlation.

HTTP requests get their ID from the X-Request-ID header (or a fresh UUID4);
background work labels itself, e.g. ``entry:42`` for a readability fetch or
``refresh:7`` for a scheduler cycle. The ID lives in a contextvars.ContextVar
so every log line emitted inside that task carries it.
"""

import contextvars
import uuid
from contextlib import contextmanager

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# Context variable accessible from anywhere in the same async task
task_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("task_id", default="")


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = task_id_var.set(rid)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            return response
        finally:
            task_id_var.reset(token)


@contextmanager
def task_context(task_id: str):
    """Label log lines emitted inside the block, unless a request ID is already set."""
    if task_id_var.get():
        yield
        return
    token = task_id_var.set(task_id)
    try:
        yield
    finally:
        task_id_var.reset(token)


def get_task_id() -> str:
    """Get the current task ID (empty string outside any labelled context)."""
    return task_id_var.get()
