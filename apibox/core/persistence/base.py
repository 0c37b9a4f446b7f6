"""Abstract PersistentStore — durable sink for history points."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class HistoryPoint:
    timestamp: int  # ms since epoch
    value: Any

    @property
    def hour_bucket(self) -> int:
        return self.timestamp // 3_600_000

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "value": self.value}


class PersistentStore(ABC):

    @property
    @abstractmethod
    def enabled(self) -> bool:
        ...

    @abstractmethod
    async def append(self, subject: str, timestamp_ms: int, value: Any) -> None:
        """Raises PersistenceError on failure."""
        ...

    @abstractmethod
    async def query(
        self,
        subject: str,
        start_ms: int | None = None,
        end_ms: int | None = None,
    ) -> list[HistoryPoint]:
        """
        Returns points for subject in [start_ms, end_ms], ascending by timestamp.
        Raises PersistenceError on failure.
        """
        ...

    async def close(self) -> None:
        return None


class NullStore(PersistentStore):
    """Stand-in used when write-behind persistence is switched off."""

    @property
    def enabled(self) -> bool:
        return False

    async def append(self, subject: str, timestamp_ms: int, value: Any) -> None:
        return None

    async def query(self, subject: str, start_ms: int | None = None, end_ms: int | None = None) -> list[HistoryPoint]:
        return []
