class LoadbalancerError(Exception):
    pass


class ConfigurationError(LoadbalancerError, ValueError):
    pass


class DuplicateEndpointError(ConfigurationError):
    def __init__(self, key: str):
        super().__init__(f"endpoint keys must be unique, {key!r} is already registered")
        self.key = key


class UnknownEndpointError(LoadbalancerError, KeyError):
    def __init__(self, key: str):
        super().__init__(key)
        self.key = key

    def __str__(self):
        return f"unknown endpoint: {self.key!r}"


class ExhaustedPoolError(LoadbalancerError):
    def __init__(self, excluded):
        super().__init__("every endpoint in the pool has been excluded")
        self.excluded = frozenset(excluded)


class TransportError(LoadbalancerError):
    """Network or HTTP level failure; the only kind failover retries on."""

    def __init__(self, message: str, endpoint=None, status: int | None = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status = status


class RetriesExhaustedError(LoadbalancerError):
    def __init__(self, attempts: int, last_error: Exception | None = None):
        super().__init__(
            f"maximum number of loadbalancer retries reached ({attempts} attempts)"
        )
        self.attempts = attempts
        self.last_error = last_error
