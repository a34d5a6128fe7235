"""
Request context for dispatched intents

The router stamps each top-level intent with a UUID7 request id held in a
ContextVar. Re-dispatches triggered by that intent inherit it, so every
event, log line and HTTP call it causes can be correlated.
"""
from contextvars import ContextVar
from typing import Optional

from uuid_extensions import uuid7

request_id_var: ContextVar[Optional[str]] = ContextVar('selection_request_id', default=None)


def get_request_id() -> str:
    """Current request id, or 'unknown' outside a dispatch"""
    return request_id_var.get() or "unknown"


def new_request_id() -> str:
    return str(uuid7())
