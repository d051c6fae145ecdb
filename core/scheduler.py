from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class Endpoint:
    key: str
    url: str
    timeout: float = 5.0


class Scheduler(ABC):
    @abstractmethod
    def pick(self, excluded: Iterable[str] = ()) -> str:
        pass
