import random
from collections.abc import Iterable, Mapping
from core.errors import ConfigurationError, ExhaustedPoolError
from core.scheduler import Scheduler


def check_weight(key: str, weight) -> None:
    if isinstance(weight, bool) or not isinstance(weight, int) or weight < 1:
        raise ConfigurationError(
            f"weight for endpoint {key!r} must be a positive integer, got {weight!r}"
        )


class WeightedRandomChoice(Scheduler):
    """Weighted random pick over a fixed set of endpoint keys.

    The pool itself is never mutated by a pick. Sampling without replacement
    across a retry sequence is done by the caller growing ``excluded``.
    """

    def __init__(self, entries: Mapping[str, int], rng: random.Random | None = None):
        if not entries:
            raise ConfigurationError("cannot build a pool without endpoints")
        for key, weight in entries.items():
            check_weight(key, weight)
        # sorted so the cumulative walk is deterministic for a seeded rng
        self._entries: tuple[tuple[str, int], ...] = tuple(sorted(entries.items()))
        self._rng = rng or random.Random()

    @property
    def keys(self) -> list[str]:
        return [key for key, _ in self._entries]

    def __len__(self):
        return len(self._entries)

    def pick(self, excluded: Iterable[str] = ()) -> str:
        excluded = set(excluded)
        candidates = [(k, w) for k, w in self._entries if k not in excluded]
        if not candidates:
            raise ExhaustedPoolError(excluded)

        total = sum(w for _, w in candidates)
        r = self._rng.randrange(total)
        cumulative = 0
        for key, weight in candidates:
            cumulative += weight
            if r < cumulative:
                return key

        # unreachable: r < total == final cumulative
        raise ExhaustedPoolError(excluded)
