from .errors import (
    LoadbalancerError,
    ConfigurationError,
    DuplicateEndpointError,
    UnknownEndpointError,
    ExhaustedPoolError,
    TransportError,
    RetriesExhaustedError,
)
from .metrics import MetricsCollector
from .scheduler import Endpoint, Scheduler
from .scheduler_impl import WeightedRandomChoice, check_weight
from .transport import Request, Response, Transport, AiohttpTransport
from .events import EndpointFailure, LoggingFailureSink
from .config import LoadbalancerOptions, CATEGORY_SELECT, CATEGORY_UPDATE
from .client import Client
