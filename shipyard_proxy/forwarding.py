import logging
from enum import Enum

import anyio
import httpx
from fastapi import Request, Response
from pydantic import BaseModel
from starlette.types import Message, Receive, Scope, Send

from .pages import error_page
from .routing import RoutingDecision

logger = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = {
    'connection',
    'keep-alive',
    'proxy-authenticate',
    'proxy-authorization',
    'te',
    'trailers',
    'transfer-encoding',
    'upgrade',
}


class ForwardOutcome(str, Enum):
    COMPLETED = 'completed'     # upstream bytes relayed in full
    FAILED = 'failed'           # transport error; error page sent or connection dropped
    ABORTED = 'aborted'         # client went away mid-relay


class ForwardResult(BaseModel):
    outcome: ForwardOutcome
    target_url: str
    status_code: int | None = None
    error: str | None = None


class ResponseSink:
    """
    Writes one HTTP response through an ASGI ``send`` callable.

    Tracks whether the response head has gone out, so a failure that happens
    mid-body never produces a second response.
    """
    def __init__(self, send: Send):
        self._send = send
        self.headers_sent = False
        self.completed = False

    async def start(self, status_code: int, headers: list[tuple[bytes, bytes]]) -> None:
        if self.headers_sent:
            raise RuntimeError('Response already started')
        self.headers_sent = True
        await self._send({
            'type': 'http.response.start',
            'status': status_code,
            'headers': headers,
        })

    async def write(self, chunk: bytes) -> None:
        await self._send({'type': 'http.response.body', 'body': chunk, 'more_body': True})

    async def finish(self) -> None:
        await self._send({'type': 'http.response.body', 'body': b'', 'more_body': False})
        self.completed = True

    async def send_response(self, response: Response) -> None:
        await self.start(response.status_code, response.raw_headers)
        await self._send({'type': 'http.response.body', 'body': response.body, 'more_body': False})
        self.completed = True


def outgoing_headers(request: Request) -> list[tuple[str, str]]:
    """
    Client headers minus hop-by-hop ones and ``Host``.

    httpx fills ``Host`` from the target URL, which gives change-origin
    semantics for the storage backend.
    """
    headers = [
        (k, v) for k, v in request.headers.items()
        if k.lower() not in HOP_BY_HOP_HEADERS and k.lower() != 'host'
    ]
    client_ip = request.client.host if request.client else None
    prior = request.headers.get('x-forwarded-for')
    if client_ip:
        headers = [(k, v) for k, v in headers if k.lower() != 'x-forwarded-for']
        headers.append(('x-forwarded-for', f'{prior}, {client_ip}' if prior else client_ip))
    if 'x-forwarded-host' not in request.headers and request.headers.get('host'):
        headers.append(('x-forwarded-host', request.headers['host']))
    if 'x-forwarded-proto' not in request.headers:
        headers.append(('x-forwarded-proto', request.url.scheme))
    return headers


def relayed_headers(response: httpx.Response) -> list[tuple[bytes, bytes]]:
    return [
        (k.lower(), v) for k, v in response.headers.raw
        if k.lower().decode('latin-1') not in HOP_BY_HOP_HEADERS
    ]


class Forwarder:
    """Sends a routed request to the storage origin and relays the answer."""
    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def build_request(self, decision: RoutingDecision, request: Request) -> httpx.Request:
        body = await request.body()
        return self.client.build_request(
            request.method,
            decision.target_url,
            headers=outgoing_headers(request),
            content=body,
            params=request.query_params,
        )

    async def forward(self,
                      decision: RoutingDecision,
                      request: Request,
                      sink: ResponseSink) -> ForwardResult:
        """
        Forward once, never raising for transport failures.

        A client disconnect at any point after the request body has been read
        cancels the attempt and releases the upstream connection.

        :return: the outcome of the attempt; the client response has been
                 written (or deliberately abandoned) by the time this returns.
        """
        target_url = decision.target_url
        logger.info('Proxying %s %s -> %s', request.method, request.url.path, target_url)

        try:
            upstream_request = await self.build_request(decision, request)
        except Exception as exc:
            logger.error('Could not build upstream request for %s: %r', target_url, exc)
            return await self._fail(sink, target_url, 502, str(exc) or exc.__class__.__name__)

        result: ForwardResult | None = None
        disconnected = False

        # body is consumed above, so the only message left to receive is a disconnect
        async with anyio.create_task_group() as task_group:
            async def watch_disconnect() -> None:
                nonlocal disconnected
                while True:
                    message: Message = await request.receive()
                    if message['type'] == 'http.disconnect':
                        disconnected = not sink.completed
                        task_group.cancel_scope.cancel()
                        return

            task_group.start_soon(watch_disconnect)
            try:
                result = await self._exchange(upstream_request, target_url, sink)
            finally:
                task_group.cancel_scope.cancel()

        if disconnected or result is None:
            logger.info('Client disconnected while forwarding to %s', target_url)
            return ForwardResult(outcome=ForwardOutcome.ABORTED,
                                 target_url=target_url,
                                 status_code=result.status_code if result else None)
        return result

    async def _exchange(self,
                        upstream_request: httpx.Request,
                        target_url: str,
                        sink: ResponseSink) -> ForwardResult:
        # ---- Connect ----
        try:
            upstream = await self.client.send(upstream_request, stream=True)
        except httpx.TimeoutException as exc:
            logger.error('Upstream timeout for %s: %r', target_url, exc)
            return await self._fail(sink, target_url, 504, f'Upstream timed out: {exc}')
        except Exception as exc:
            logger.error('Upstream unreachable for %s: %r', target_url, exc)
            return await self._fail(sink, target_url, 502, str(exc) or exc.__class__.__name__)

        # ---- Relay ----
        try:
            error = await self._relay(upstream, sink)
        finally:
            with anyio.CancelScope(shield=True):
                await upstream.aclose()

        if error is None:
            return ForwardResult(outcome=ForwardOutcome.COMPLETED,
                                 target_url=target_url,
                                 status_code=upstream.status_code)
        if sink.headers_sent:
            logger.error('Upstream failed after response started for %s: %r; dropping connection',
                         target_url, error)
            return ForwardResult(outcome=ForwardOutcome.FAILED,
                                 target_url=target_url,
                                 status_code=upstream.status_code,
                                 error=str(error))
        status_code = 504 if isinstance(error, httpx.TimeoutException) else 502
        return await self._fail(sink, target_url, status_code, str(error))

    async def _relay(self, upstream: httpx.Response, sink: ResponseSink) -> Exception | None:
        try:
            await sink.start(upstream.status_code, relayed_headers(upstream))
            if upstream.is_stream_consumed:
                # body already loaded by the transport
                await sink.write(upstream.content)
            else:
                async for chunk in upstream.aiter_raw():
                    await sink.write(chunk)
            await sink.finish()
        except Exception as exc:
            return exc
        return None

    async def _fail(self,
                    sink: ResponseSink,
                    target_url: str,
                    status_code: int,
                    message: str) -> ForwardResult:
        await sink.send_response(error_page(status_code, message))
        return ForwardResult(outcome=ForwardOutcome.FAILED,
                             target_url=target_url,
                             status_code=status_code,
                             error=message)


class ProxyResponse(Response):
    """Response whose body is produced by forwarding to the tenant folder."""
    def __init__(self, forwarder: Forwarder, decision: RoutingDecision, request: Request):
        super().__init__()
        self.forwarder = forwarder
        self.decision = decision
        self.request = request
        self.result: ForwardResult | None = None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        self.result = await self.forwarder.forward(self.decision, self.request, ResponseSink(send))
        logger.info('tenant=%s %s status=%s outcome=%s',
                    self.decision.tenant,
                    self.result.target_url,
                    self.result.status_code,
                    self.result.outcome.value)
        if self.background is not None:
            await self.background()
