from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from core.errors import ConfigurationError

CATEGORY_SELECT = "select"
CATEGORY_UPDATE = "update"


@dataclass
class LoadbalancerOptions:
    failover_enabled: bool = False
    failover_max_retries: int = 1
    endpoints: dict[str, int] = field(default_factory=dict)
    blocked_categories: set[str] = field(default_factory=lambda: {CATEGORY_UPDATE})

    def __post_init__(self):
        if self.failover_max_retries < 0:
            raise ConfigurationError(
                f"failovermaxretries must be >= 0, got {self.failover_max_retries}"
            )

    @classmethod
    def from_dict(cls, options: Mapping[str, Any]) -> "LoadbalancerOptions":
        """Build options from the flat option names used by host configuration.

        Recognised keys: ``failoverenabled``, ``failovermaxretries``,
        ``endpoint`` (mapping of key to weight) and ``blockedquerytype``.
        """
        known = {"failoverenabled", "failovermaxretries", "endpoint", "blockedquerytype"}
        unknown = set(options) - known
        if unknown:
            raise ConfigurationError(f"unknown loadbalancer options: {sorted(unknown)}")

        kwargs: dict[str, Any] = {}
        if "failoverenabled" in options:
            kwargs["failover_enabled"] = bool(options["failoverenabled"])
        if "failovermaxretries" in options:
            try:
                kwargs["failover_max_retries"] = int(options["failovermaxretries"])
            except (TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"failovermaxretries must be an integer: {options['failovermaxretries']!r}"
                ) from e
        if "endpoint" in options:
            kwargs["endpoints"] = dict(options["endpoint"])
        if "blockedquerytype" in options:
            blocked = options["blockedquerytype"]
            if isinstance(blocked, str):
                blocked = [blocked]
            kwargs["blocked_categories"] = set(blocked)
        return cls(**kwargs)
