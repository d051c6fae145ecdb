import pytest
from aiohttp import web
from aiohttp import test_utils
from core import AiohttpTransport, Endpoint, Request, TransportError


def backend_app(status: int = 200) -> web.Application:
    async def handler(request):
        body = await request.read()
        return web.Response(
            text=f"{request.method} {request.path_qs} {body.decode()}",
            status=status,
            headers={"X-Backend": "fake"},
        )

    app = web.Application()
    app.router.add_route("*", "/{path:.*}", handler)
    return app


class TestAiohttpTransport:
    @pytest.mark.asyncio
    async def test_forwards_request(self):
        transport = AiohttpTransport()
        async with test_utils.TestServer(backend_app()) as server:
            endpoint = Endpoint("A", f"http://{server.host}:{server.port}/")
            response = await transport.execute(
                Request(method="POST", path="/select?q=1", body=b"hello"), endpoint
            )
        await transport.close()
        assert response.status == 200
        assert response.body == b"POST /select?q=1 hello"
        assert response.headers["X-Backend"] == "fake"
        assert response.endpoint == "A"

    @pytest.mark.asyncio
    async def test_client_error_is_returned(self):
        transport = AiohttpTransport()
        async with test_utils.TestServer(backend_app(404)) as server:
            endpoint = Endpoint("A", f"http://{server.host}:{server.port}")
            response = await transport.execute(Request(), endpoint)
        await transport.close()
        assert response.status == 404

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        transport = AiohttpTransport()
        async with test_utils.TestServer(backend_app(503)) as server:
            endpoint = Endpoint("A", f"http://{server.host}:{server.port}")
            with pytest.raises(TransportError) as exc_info:
                await transport.execute(Request(), endpoint)
        await transport.close()
        assert exc_info.value.status == 503
        assert exc_info.value.endpoint is endpoint

    @pytest.mark.asyncio
    async def test_connection_refused_raises(self):
        transport = AiohttpTransport()
        async with test_utils.TestServer(backend_app()) as server:
            url = f"http://{server.host}:{server.port}"
        # server is closed now
        with pytest.raises(TransportError):
            await transport.execute(Request(), Endpoint("A", url, timeout=2.0))
        await transport.close()
