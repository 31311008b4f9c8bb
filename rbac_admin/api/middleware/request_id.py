"""
Request id propagation.

The id comes from the caller's ``X-Request-ID`` header when present and is
generated otherwise. It is echoed on the response, and the context var
feeds both the log processor and the ``request_id`` column of audit
records written during the request.
"""

import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from rbac_admin.utils.context import reset_request_id, set_request_id

HEADER = "X-Request-ID"


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        token = set_request_id(request_id)
        try:
            response = await call_next(request)
        finally:
            reset_request_id(token)

        response.headers[HEADER] = request_id
        return response
