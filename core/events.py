import logging
from dataclasses import dataclass
from core.metrics import MetricsCollector
from core.scheduler import Endpoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EndpointFailure:
    endpoint: Endpoint
    error: Exception


class LoggingFailureSink:
    """Failure listener that logs and counts; never changes control flow."""

    def __init__(self, metrics: MetricsCollector | None = None) -> None:
        self.metrics = metrics

    def __call__(self, event: EndpointFailure) -> None:
        logger.warning(f"Endpoint failure: {event.endpoint.key} - {event.error}")
        if self.metrics:
            self.metrics.increment_counter(
                "endpoint.failures.total", {"endpoint": event.endpoint.key}
            )
