import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response

from .config import Settings, configure_logging, load_settings
from .forwarding import Forwarder, ProxyResponse
from .middleware import RequestLogMiddleware
from .pages import status_page
from .routing import build_decision, find_tenant

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load settings and open the shared storage client; close it on shutdown."""
    #---- Startup ----
    if not hasattr(app.state, 'settings'):
        app.state.settings = load_settings()
        configure_logging(app.state.settings.log_level)
    settings: Settings = app.state.settings

    if not hasattr(app.state, 'http_client'):
        app.state.http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout),
            follow_redirects=True,
        )

    logger.info('BASE_PATH set to: %s', settings.base_path)
    logger.info('PRIMARY_DOMAIN set to: %s', settings.primary_domain)
    logger.info('Resolution mode: %s', settings.resolution_mode)

    try:
        yield
    finally:
        #---- Shutdown ----
        if hasattr(app.state, 'http_client'):
            await app.state.http_client.aclose()

application = FastAPI(lifespan=lifespan)
application.add_middleware(RequestLogMiddleware)


def shows_status_page(settings: Settings, request: Request, path: str) -> bool:
    """`/` is the status page unless the request already names a project."""
    if not settings.status_page or path or request.method not in ('GET', 'HEAD'):
        return False
    if settings.resolution_mode == 'path':
        return True
    return find_tenant(request.headers.get('host'), settings.primary_domain) is None


def raw_request_path(request: Request, path: str) -> str:
    """Request path still percent-encoded, so `%2F`, `%3F` and `%23` reach the origin as sent."""
    raw_path = request.scope.get('raw_path')
    if not raw_path:
        return "/" + path
    return raw_path.split(b"?", 1)[0].decode('latin-1')


@application.api_route(
    path="/{path:path}",
    methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"],
)
async def proxy(path: str, request: Request) -> Response:
    settings: Settings = request.app.state.settings

    if shows_status_page(settings, request, path):
        return status_page(settings, request.headers.get('host'))

    decision = build_decision(settings, request.headers.get('host'), raw_request_path(request, path))
    forwarder = Forwarder(request.app.state.http_client)
    return ProxyResponse(forwarder, decision, request)


def run() -> None:
    settings = load_settings()
    configure_logging(settings.log_level)
    application.state.settings = settings
    logger.info('Reverse Proxy running on port %s', settings.port)
    uvicorn.run(application, host=settings.host, port=settings.port)
