"""Correlation ID middleware."""

import re
import uuid
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

CORRELATION_HEADER = "x-correlation-id"

# Caller-supplied ids end up in audit entries, so only short, plain ids are kept.
_VALID_CORRELATION_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def resolve_correlation_id(header_value: Optional[str]) -> str:
    if header_value and _VALID_CORRELATION_ID.match(header_value):
        return header_value
    return str(uuid.uuid4())


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Attach a correlation ID to each request; audit entries carry it."""

    async def dispatch(self, request: Request, call_next):
        request.state.correlation_id = resolve_correlation_id(request.headers.get(CORRELATION_HEADER))

        response: Response = await call_next(request)

        response.headers[CORRELATION_HEADER] = request.state.correlation_id
        return response
