import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING
from core.config import CATEGORY_SELECT
from core.errors import ConfigurationError, DuplicateEndpointError, UnknownEndpointError
from core.events import EndpointFailure
from core.scheduler import Endpoint
from core.transport import Request, Response, Transport

if TYPE_CHECKING:
    from loadbalancer import Loadbalancer

logger = logging.getLogger(__name__)

FailureListener = Callable[[EndpointFailure], None]


class Client:
    """Holds endpoint handles and a transport, and runs the request pipeline.

    Without an attached loadbalancer every request goes to the current default
    endpoint. With one attached, the loadbalancer decides per request.
    """

    def __init__(
        self,
        transport: Transport,
        endpoints: Iterable[Endpoint] = (),
        default: str | None = None,
    ) -> None:
        self.transport = transport
        self._endpoints: dict[str, Endpoint] = {}
        self._default: str | None = None
        self._listeners: list[FailureListener] = []
        self._loadbalancer: "Loadbalancer | None" = None
        for endpoint in endpoints:
            self.add_endpoint(endpoint)
        if default is not None:
            self.set_default_endpoint(default)

    @property
    def endpoints(self) -> dict[str, Endpoint]:
        return dict(self._endpoints)

    @property
    def loadbalancer(self) -> "Loadbalancer | None":
        return self._loadbalancer

    def add_endpoint(self, endpoint: Endpoint):
        if endpoint.key in self._endpoints:
            raise DuplicateEndpointError(endpoint.key)
        self._endpoints[endpoint.key] = endpoint
        # first endpoint becomes the default until told otherwise
        if self._default is None:
            self._default = endpoint.key

    def remove_endpoint(self, key: str):
        self._endpoints.pop(key, None)
        if self._default == key:
            self._default = next(iter(self._endpoints), None)

    def set_default_endpoint(self, key: str):
        if key not in self._endpoints:
            raise UnknownEndpointError(key)
        self._default = key

    def get_endpoint(self, key: str | None = None) -> Endpoint:
        if key is None:
            if self._default is None:
                raise ConfigurationError("client has no endpoints configured")
            key = self._default
        try:
            return self._endpoints[key]
        except KeyError:
            raise UnknownEndpointError(key) from None

    def add_failure_listener(self, listener: FailureListener):
        self._listeners.append(listener)

    def remove_failure_listener(self, listener: FailureListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def notify_failure(self, event: EndpointFailure):
        for listener in self._listeners:
            listener(event)

    def attach(self, loadbalancer: "Loadbalancer"):
        self._loadbalancer = loadbalancer

    def detach(self):
        self._loadbalancer = None

    async def execute(self, request: Request, category: str = CATEGORY_SELECT) -> Response:
        lb = self._loadbalancer
        if lb is None:
            return await self.transport.execute(request, self.get_endpoint())
        lb.on_before_request_categorized(category)
        return await lb.on_before_dispatch(request)
