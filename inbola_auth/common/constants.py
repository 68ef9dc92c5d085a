import contextvars
from typing import Optional

VERSION_PREFIX = "/api/v1"

# Context variables for request id
request_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
