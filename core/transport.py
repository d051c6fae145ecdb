import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import aiohttp
from aiohttp import ClientSession
from core.errors import TransportError
from core.scheduler import Endpoint

logger = logging.getLogger(__name__)


@dataclass
class Request:
    method: str = "GET"
    path: str = "/"
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


@dataclass
class Response:
    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    endpoint: str | None = None


class Transport(ABC):
    @abstractmethod
    async def execute(self, request: Request, endpoint: Endpoint) -> Response:
        """Send ``request`` to ``endpoint``; raise TransportError on failure."""

    async def close(self):
        pass


class AiohttpTransport(Transport):
    # hop-by-hop headers that must not be forwarded
    _SKIP_HEADERS = frozenset({"host", "content-length", "transfer-encoding", "connection"})

    def __init__(self, session: ClientSession | None = None) -> None:
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> ClientSession:
        if self._session is None:
            self._session = ClientSession()
        return self._session

    async def execute(self, request: Request, endpoint: Endpoint) -> Response:
        session = await self._get_session()
        url = f"{endpoint.url.rstrip('/')}/{request.path.lstrip('/')}"
        headers = {
            k: v for k, v in request.headers.items() if k.lower() not in self._SKIP_HEADERS
        }
        try:
            async with session.request(
                method=request.method,
                url=url,
                headers=headers,
                data=request.body or None,
                timeout=aiohttp.ClientTimeout(total=endpoint.timeout),
            ) as resp:
                body = await resp.read()
                if resp.status >= 500:
                    raise TransportError(
                        f"{endpoint.key} answered {resp.status}",
                        endpoint=endpoint,
                        status=resp.status,
                    )
                return Response(
                    status=resp.status,
                    body=body,
                    headers={
                        k: v
                        for k, v in resp.headers.items()
                        if k.lower() not in self._SKIP_HEADERS
                    },
                    endpoint=endpoint.key,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Transport error for {endpoint.key} ({url}): {e!r}")
            raise TransportError(
                f"request to {endpoint.key} failed: {e}", endpoint=endpoint
            ) from e

    async def close(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
