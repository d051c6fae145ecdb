"""Client-side software loadbalancing over equivalent endpoints.

Every endpoint in the pool has a weight which sets how likely it is to be
picked for a request. Requests whose category is blocked (updates, by default)
are never balanced and always go to the client's default endpoint, which in a
primary/replica setup should be the primary.

With failover enabled a request that fails at the transport level is retried
on another endpoint, up to ``failover_max_retries`` extra attempts.
"""

import logging
import random
import time
from collections.abc import Iterable, Mapping
from core import (
    Client,
    ConfigurationError,
    DuplicateEndpointError,
    Endpoint,
    EndpointFailure,
    ExhaustedPoolError,
    LoadbalancerOptions,
    MetricsCollector,
    Request,
    Response,
    RetriesExhaustedError,
    TransportError,
    UnknownEndpointError,
    WeightedRandomChoice,
)

logger = logging.getLogger(__name__)

EndpointRef = Endpoint | str


def _key(endpoint: EndpointRef) -> str:
    return endpoint.key if isinstance(endpoint, Endpoint) else endpoint


class Loadbalancer:
    """Picks an endpoint for each request and retries elsewhere on failure.

    Not safe for concurrent requests: the forced endpoint, the last used
    endpoint and the per-request exclusions are plain instance state. Callers
    sharing one instance must serialise calls to :meth:`handle`.
    """

    def __init__(
        self,
        client: Client,
        options: LoadbalancerOptions | None = None,
        metrics: MetricsCollector | None = None,
        rng: random.Random | None = None,
    ) -> None:
        options = options or LoadbalancerOptions()
        self.client = client
        self.metrics = metrics
        self._rng = rng or random.Random()
        self._endpoints: dict[str, int] = {}
        self._blocked_categories: set[str] = set()
        self._failover_enabled = False
        self._failover_max_retries = 1
        self._forced_endpoint: str | None = None
        self._default_endpoint: str | None = None
        self._last_endpoint: str | None = None
        self._category: str | None = None
        self._excluded: set[str] = set()
        self._randomizer: WeightedRandomChoice | None = None

        self.set_failover_enabled(options.failover_enabled)
        self.set_failover_max_retries(options.failover_max_retries)
        self.set_endpoints(options.endpoints)
        self.set_blocked_categories(options.blocked_categories)
        client.attach(self)

    def deinit(self):
        if self.client.loadbalancer is self:
            self.client.detach()

    # failover options

    def set_failover_enabled(self, value: bool):
        self._failover_enabled = bool(value)

    def get_failover_enabled(self) -> bool:
        return self._failover_enabled

    def set_failover_max_retries(self, value: int):
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigurationError(f"failover max retries must be an int >= 0, got {value!r}")
        self._failover_max_retries = value

    def get_failover_max_retries(self) -> int:
        return self._failover_max_retries

    # endpoint registry

    def add_endpoint(self, endpoint: EndpointRef, weight: int = 1):
        key = _key(endpoint)
        if key in self._endpoints:
            raise DuplicateEndpointError(key)
        self._endpoints[key] = weight
        self._randomizer = None

    def add_endpoints(self, endpoints: Mapping[EndpointRef, int] | Iterable[tuple[EndpointRef, int]]):
        """Add endpoints one by one in the given order.

        Not transactional: on a duplicate key the endpoints added before it stay
        registered.
        """
        items = endpoints.items() if isinstance(endpoints, Mapping) else endpoints
        for endpoint, weight in items:
            self.add_endpoint(endpoint, weight)

    def get_endpoints(self) -> dict[str, int]:
        return dict(self._endpoints)

    def remove_endpoint(self, endpoint: EndpointRef):
        key = _key(endpoint)
        if key not in self._endpoints:
            return
        del self._endpoints[key]
        self._randomizer = None
        if self._forced_endpoint == key:
            self._forced_endpoint = None

    def set_endpoints(self, endpoints: Mapping[EndpointRef, int] | Iterable[tuple[EndpointRef, int]]):
        self.clear_endpoints()
        self.add_endpoints(endpoints)

    def clear_endpoints(self):
        self._endpoints = {}
        self._randomizer = None
        self._forced_endpoint = None

    # selection overrides

    def set_forced_next_endpoint(self, endpoint: EndpointRef | None):
        """Pin the next balanced request to ``endpoint``; ``None`` clears it.

        The override is used once and then reset. Requests of a blocked
        category neither use nor reset it.
        """
        key = None if endpoint is None else _key(endpoint)
        if key is not None and key not in self._endpoints:
            raise UnknownEndpointError(key)
        self._forced_endpoint = key

    def get_forced_next_endpoint(self) -> str | None:
        return self._forced_endpoint

    def get_last_endpoint(self) -> str | None:
        """Key of the endpoint used for the last request.

        ``None`` if nothing ran yet or the last request was not balanced.
        """
        return self._last_endpoint

    def get_default_endpoint(self) -> str | None:
        return self._default_endpoint

    # category policy

    def get_blocked_categories(self) -> set[str]:
        return set(self._blocked_categories)

    def set_blocked_categories(self, categories: Iterable[str]):
        self.clear_blocked_categories()
        self.add_blocked_categories(categories)

    def add_blocked_category(self, category: str):
        self._blocked_categories.add(category)

    def add_blocked_categories(self, categories: Iterable[str]):
        for category in categories:
            self.add_blocked_category(category)

    def remove_blocked_category(self, category: str):
        self._blocked_categories.discard(category)

    def clear_blocked_categories(self):
        self._blocked_categories = set()

    # host pipeline hooks

    def on_before_request_categorized(self, category: str):
        self._category = category

    async def on_before_dispatch(self, request: Request) -> Response:
        return await self.handle(self._category, request)

    async def handle(self, category: str | None, request: Request) -> Response:
        # captured once; later changes to the client's default are ignored
        if self._default_endpoint is None:
            self._default_endpoint = self.client.get_endpoint().key

        if category in self._blocked_categories:
            self._last_endpoint = None
            endpoint = self.client.get_endpoint(self._default_endpoint)
            logger.debug(f"Category {category!r} is blocked, using default {endpoint.key}")
            return await self._dispatch(request, endpoint, balanced=False)

        return await self._get_loadbalanced_response(request)

    async def _get_loadbalanced_response(self, request: Request) -> Response:
        self._excluded = set()
        try:
            if not self._failover_enabled:
                return await self._dispatch(request, self._get_random_endpoint())

            attempts = 0
            last_error: Exception | None = None
            for _ in range(self._failover_max_retries + 1):
                try:
                    endpoint = self._get_random_endpoint()
                except ExhaustedPoolError as e:
                    logger.debug(f"No endpoints left to try: {sorted(e.excluded)}")
                    last_error = last_error or e
                    break
                attempts += 1
                try:
                    return await self._dispatch(request, endpoint)
                except TransportError as e:
                    last_error = e
                    self.client.notify_failure(EndpointFailure(endpoint, e))

            logger.error(f"Loadbalancer retries exhausted after {attempts} attempts")
            if self.metrics:
                self.metrics.increment_counter("loadbalancer.retries.exhausted")
            raise RetriesExhaustedError(attempts, last_error) from last_error
        finally:
            self._excluded = set()

    def _get_random_endpoint(self) -> Endpoint:
        if self._forced_endpoint is not None:
            key = self._forced_endpoint
            self._forced_endpoint = None
            logger.debug(f"Using forced endpoint {key}")
        else:
            key = self._get_randomizer().pick(self._excluded)
            logger.debug(f"Picked endpoint {key} (excluded: {sorted(self._excluded)})")

        self._excluded.add(key)
        self._last_endpoint = key
        return self.client.get_endpoint(key)

    def _get_randomizer(self) -> WeightedRandomChoice:
        if self._randomizer is None:
            self._randomizer = WeightedRandomChoice(self._endpoints, rng=self._rng)
        return self._randomizer

    async def _dispatch(self, request: Request, endpoint: Endpoint, balanced: bool = True) -> Response:
        start_time = time.time()
        status = "error"
        try:
            response = await self.client.transport.execute(request, endpoint)
            status = str(response.status)
            return response
        finally:
            if self.metrics:
                duration = (time.time() - start_time) * 1000
                self.metrics.increment_counter(
                    "loadbalancer.requests.total",
                    {
                        "endpoint": endpoint.key,
                        "balanced": "true" if balanced else "false",
                        "status": status,
                    },
                )
                self.metrics.record_histogram(
                    "loadbalancer.dispatch.latency.ms", duration, {"endpoint": endpoint.key}
                )
