# Shared fixtures: proxy settings, a fake storage origin and the app client wired to it
import pytest
from asgi_lifespan import LifespanManager
from fastapi import FastAPI, Request, Response
from fastapi.responses import HTMLResponse, RedirectResponse
from httpx import AsyncClient, ASGITransport

from shipyard_proxy.config import Settings
from shipyard_proxy.main import application as gateway_app


@pytest.fixture
def settings() -> Settings:
    return Settings(
        base_path='http://upstream/sites',
        primary_domain='shipyard.example',
    )


@pytest.fixture
def upstream_app() -> FastAPI:
    app = FastAPI()     # mock storage origin for tests

    @app.get("/sites/{tenant}/index.html")
    async def index(tenant: str):   # default document of each tenant folder
        return HTMLResponse(f"<h1>{tenant} home</h1>")

    @app.get("/sites/{tenant}/style.css")
    async def style(tenant: str):
        return Response("body { color: red; }", media_type="text/css")

    @app.get("/sites/{tenant}/headers")
    async def headers(tenant: str, request: Request):   # tests header and query forwarding
        return {
            "tenant": tenant,
            "received_headers": dict(request.headers),
            "query": dict(request.query_params),
        }

    @app.get("/sites/{tenant}/raw/{key:path}")
    async def raw(tenant: str, key: str, request: Request):    # object key exactly as the origin received it
        return {
            "tenant": tenant,
            "raw_path": request.scope["raw_path"].split(b"?", 1)[0].decode("latin-1"),
            "query": dict(request.query_params),
        }

    @app.post("/sites/{tenant}/echo")
    async def echo(tenant: str, payload: dict):     # tests body forwarding
        return payload

    @app.get("/sites/{tenant}/moved")
    async def moved(tenant: str):
        return RedirectResponse(f"/sites/{tenant}/index.html", status_code=301)

    @app.get("/sites/{tenant}/private")
    async def private(tenant: str):
        return Response("<Error>AccessDenied</Error>", status_code=403, media_type="application/xml")

    return app


@pytest.fixture
async def upstream_client(upstream_app: FastAPI):
    """httpx client the proxy uses to reach the fake storage origin"""
    client = AsyncClient(
        transport=ASGITransport(app=upstream_app),
        base_url="http://upstream",
        follow_redirects=True,
    )
    yield client
    await client.aclose()


@pytest.fixture
async def gateway_client(settings: Settings, upstream_client: AsyncClient):
    """Client for the proxy app, whose http_client talks to the fake storage origin"""
    # Pre-seed state so the lifespan does not read the environment
    gateway_app.state.settings = settings
    gateway_app.state.http_client = upstream_client

    async with LifespanManager(gateway_app):
        # requests enter the proxy through its ASGI interface
        gateway_transport = ASGITransport(app=gateway_app)
        async with AsyncClient(
                transport=gateway_transport,
                base_url="http://gateway") as client:
            yield client
