import logging

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)


class RequestLogMiddleware:
    """Logs every incoming HTTP request before routing."""
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        url = scope.get("path", "")
        query_string = scope.get("query_string", b"")
        if query_string:
            url += "?" + query_string.decode("latin-1")
        logger.debug(
            "Request received: url=%s method=%s host=%s",
            url,
            scope.get("method"),
            headers.get("host"),
        )

        await self.app(scope, receive, send)
