import random
import pytest
from core import Client, Endpoint, LoadbalancerOptions, Request, Response, Transport, TransportError
from loadbalancer import Loadbalancer


class FakeTransport(Transport):
    """Answers with the endpoint key, or fails for keys in ``failing``."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls: list[tuple[Request, str]] = []

    async def execute(self, request, endpoint):
        self.calls.append((request, endpoint.key))
        if endpoint.key in self.failing:
            raise TransportError(f"{endpoint.key} is down", endpoint=endpoint)
        return Response(status=200, body=endpoint.key.encode(), endpoint=endpoint.key)

    @property
    def keys(self) -> list[str]:
        return [key for _, key in self.calls]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def client(transport):
    return Client(
        transport,
        endpoints=[Endpoint("A", "http://a"), Endpoint("B", "http://b"), Endpoint("C", "http://c")],
    )


@pytest.fixture
def make_lb(client):
    def _make(endpoints=None, seed=0, **options):
        opts = LoadbalancerOptions(
            endpoints={"A": 1, "B": 1, "C": 1} if endpoints is None else endpoints,
            **options,
        )
        return Loadbalancer(client, opts, rng=random.Random(seed))

    return _make
