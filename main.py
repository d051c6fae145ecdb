from loadbalancer import Loadbalancer
from core import (
    AiohttpTransport,
    CATEGORY_SELECT,
    CATEGORY_UPDATE,
    Client,
    ConfigurationError,
    Endpoint,
    LoadbalancerError,
    LoadbalancerOptions,
    LoggingFailureSink,
    MetricsCollector,
    Request,
    RetriesExhaustedError,
    TransportError,
    check_weight,
)
from aiohttp import web
import argparse
import asyncio
import logging
import time

READ_METHODS = frozenset({"GET", "HEAD"})


def setup_logging(log_level: str, log_file: str | None):
    level = getattr(logging, log_level.upper())
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(message)s",
        handlers=handlers,
    )
    return logging.getLogger(__name__)


def parse_endpoint(value: str, timeout: float = 5.0) -> tuple[Endpoint, int]:
    """Parse ``KEY=URL[,WEIGHT]`` into an endpoint and its weight."""
    key, sep, rest = value.partition("=")
    if not sep or not key or not rest:
        raise argparse.ArgumentTypeError(f"expected KEY=URL[,WEIGHT], got {value!r}")
    url, _, weight = rest.partition(",")
    try:
        weight = int(weight) if weight else 1
    except ValueError:
        raise argparse.ArgumentTypeError(f"weight must be an integer in {value!r}") from None
    return Endpoint(key, url, timeout=timeout), weight


def categorize(request: web.Request) -> str:
    return CATEGORY_SELECT if request.method in READ_METHODS else CATEGORY_UPDATE


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="HTTP gateway balancing reads over replicas and sending writes to the primary"
    )
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument(
        "--metrics-port", type=int, default=9090, help="Port for metrics server"
    )
    parser.add_argument(
        "--enable-metrics",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Enable metrics collection",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument(
        "--log-file", default=None, help="Optional file path for logging"
    )
    parser.add_argument(
        "--endpoint",
        action="append",
        default=[],
        metavar="KEY=URL[,WEIGHT]",
        help="Backend endpoint, repeatable; the first one is the default",
    )
    parser.add_argument(
        "--default", default=None, help="Key of the endpoint for unbalanced requests"
    )
    parser.add_argument("--failover", action="store_true", help="Enable failover")
    parser.add_argument("--max-retries", type=int, default=1)
    parser.add_argument(
        "--block",
        action="append",
        default=None,
        metavar="CATEGORY",
        help="Request category exempt from balancing (default: update)",
    )
    parser.add_argument(
        "--timeout", type=float, default=5.0, help="Per request timeout in seconds"
    )
    return parser


def build_loadbalancer(args, metrics: MetricsCollector | None) -> Loadbalancer:
    endpoints = [parse_endpoint(value, args.timeout) for value in args.endpoint]
    if not endpoints:
        raise ConfigurationError("at least one --endpoint is required")

    client = Client(
        AiohttpTransport(),
        endpoints=[endpoint for endpoint, _ in endpoints],
        default=args.default,
    )
    client.add_failure_listener(LoggingFailureSink(metrics))

    options = LoadbalancerOptions(
        failover_enabled=args.failover,
        failover_max_retries=args.max_retries,
        endpoints={endpoint.key: weight for endpoint, weight in endpoints},
    )
    if args.block is not None:
        options.blocked_categories = set(args.block)
    return Loadbalancer(client, options, metrics=metrics)


def create_app(lb: Loadbalancer, logger: logging.Logger | None = None) -> web.Application:
    logger = logger or logging.getLogger(__name__)
    client = lb.client
    # one request at a time through the balancer
    pipeline_lock = asyncio.Lock()

    async def proxy_handler(request):
        start_time = time.time()
        category = categorize(request)
        outgoing = Request(
            method=request.method,
            path=str(request.rel_url),
            headers=dict(request.headers),
            body=await request.read(),
        )
        async with pipeline_lock:
            try:
                resp = await client.execute(outgoing, category)
            except RetriesExhaustedError as e:
                logger.error(f"{request.method} {request.path}: {e}")
                return web.Response(text=str(e), status=503)
            except TransportError as e:
                logger.error(f"{request.method} {request.path}: {e}")
                return web.Response(text=str(e), status=502)
            served_by = resp.endpoint or lb.get_last_endpoint()

        duration = (time.time() - start_time) * 1000
        logger.info(
            f"{request.method} {request.path} [{category}] -> {served_by} ({resp.status}) - {duration:.2f}ms"
        )
        return web.Response(body=resp.body, status=resp.status, headers=resp.headers)

    async def add_endpoint(request):
        data = await request.json()
        endpoint = Endpoint(data["key"], data["url"], timeout=data.get("timeout", 5.0))
        weight = data.get("weight", 1)
        check_weight(endpoint.key, weight)

        # the captured default stays in the client after a remove, so it can come back
        known = client.endpoints.get(endpoint.key)
        if known is not None and known.url != endpoint.url:
            raise ConfigurationError(
                f"endpoint {endpoint.key!r} is already known with url {known.url}"
            )
        if known is None:
            client.add_endpoint(endpoint)
        try:
            lb.add_endpoint(endpoint, weight)
        except LoadbalancerError:
            if known is None:
                client.remove_endpoint(endpoint.key)
            raise
        logger.info(f"Endpoint added: {endpoint.key} ({endpoint.url}) weight={weight}")
        return web.json_response({"status": "added"})

    async def remove_endpoint(request):
        data = await request.json()
        key = data["key"]
        lb.remove_endpoint(key)
        if key != lb.get_default_endpoint():
            client.remove_endpoint(key)
        logger.info(f"Endpoint removed: {key}")
        return web.json_response({"status": "removed"})

    async def force_endpoint(request):
        data = await request.json()
        lb.set_forced_next_endpoint(data.get("key"))
        logger.info(f"Forced next endpoint: {data.get('key')}")
        return web.json_response({"status": "forced"})

    async def set_failover(request):
        data = await request.json()
        if "enabled" in data and not isinstance(data["enabled"], bool):
            raise ConfigurationError(f"enabled must be true or false, got {data['enabled']!r}")
        if "max_retries" in data:
            lb.set_failover_max_retries(data["max_retries"])
        if "enabled" in data:
            lb.set_failover_enabled(data["enabled"])
        logger.info(
            f"Failover enabled={lb.get_failover_enabled()} max_retries={lb.get_failover_max_retries()}"
        )
        return web.json_response({"status": "failover_updated"})

    async def set_blocked(request):
        data = await request.json()
        lb.set_blocked_categories(data["categories"])
        logger.info(f"Blocked categories: {sorted(lb.get_blocked_categories())}")
        return web.json_response({"status": "blocked_updated"})

    async def list_endpoints(request):
        endpoints = client.endpoints
        return web.json_response(
            {
                "endpoints": {
                    key: {"url": endpoints[key].url, "weight": weight}
                    for key, weight in lb.get_endpoints().items()
                    if key in endpoints
                },
                "default": lb.get_default_endpoint() or client.get_endpoint().key,
                "last": lb.get_last_endpoint(),
                "forced": lb.get_forced_next_endpoint(),
                "blocked": sorted(lb.get_blocked_categories()),
                "failover": {
                    "enabled": lb.get_failover_enabled(),
                    "max_retries": lb.get_failover_max_retries(),
                },
            }
        )

    @web.middleware
    async def usage_errors(request, handler):
        try:
            return await handler(request)
        except (LoadbalancerError, KeyError, ValueError) as e:
            if not request.path.startswith("/_control/"):
                raise
            return web.json_response({"error": str(e)}, status=400)

    app = web.Application(middlewares=[usage_errors])

    app.router.add_post("/_control/add", add_endpoint)
    app.router.add_post("/_control/remove", remove_endpoint)
    app.router.add_post("/_control/force", force_endpoint)
    app.router.add_post("/_control/failover", set_failover)
    app.router.add_post("/_control/blocked", set_blocked)
    app.router.add_get("/_control/list", list_endpoints)

    app.router.add_route("*", "/{path:.*}", proxy_handler)
    return app


def create_metrics_app(metrics: MetricsCollector) -> web.Application:
    async def metrics_handler(request):
        accept = request.headers.get("Accept", "")
        if request.path.endswith("/json") or "application/json" in accept:
            return web.json_response(metrics.get_metrics())
        return web.Response(text=metrics.export_prometheus(), content_type="text/plain")

    metrics_app = web.Application()
    metrics_app.router.add_get("/metrics", metrics_handler)
    metrics_app.router.add_get("/metrics/json", metrics_handler)
    return metrics_app


def main():
    parser = build_parser()
    args, _ = parser.parse_known_args()

    logger = setup_logging(args.log_level, args.log_file)
    metrics = MetricsCollector() if args.enable_metrics else None
    try:
        lb = build_loadbalancer(args, metrics)
    except (LoadbalancerError, argparse.ArgumentTypeError) as e:
        parser.error(str(e))
    asyncio.run(run_app(lb, args.port, args.metrics_port, metrics, logger))


async def run_app(lb: Loadbalancer, port: int, metrics_port: int, metrics, logger):
    shutdown_event = asyncio.Event()
    runner = None
    metrics_runner = None

    try:
        runner = web.AppRunner(create_app(lb, logger))
        await runner.setup()
        site = web.TCPSite(runner, "127.0.0.1", port)
        await site.start()
        logger.info(f"Gateway running on http://127.0.0.1:{port}")

        if metrics:
            metrics_runner = web.AppRunner(create_metrics_app(metrics))
            await metrics_runner.setup()
            metrics_site = web.TCPSite(metrics_runner, "127.0.0.1", metrics_port)
            await metrics_site.start()
            logger.info(
                f"Metrics server running on http://127.0.0.1:{metrics_port}/metrics"
            )

        await shutdown_event.wait()

    finally:
        shutdown_event.set()
        if runner:
            await runner.cleanup()
        if metrics_runner:
            await metrics_runner.cleanup()
        await lb.client.transport.close()


if __name__ == "__main__":
    main()
