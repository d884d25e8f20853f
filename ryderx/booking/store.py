import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class CountdownStore(ABC):
    """
    Persisted mapping of reservation id -> hold start (epoch seconds).

    Only the payment countdown monitor reads and writes it.
    """

    @abstractmethod
    def get(self, reservation_id: str) -> Optional[float]:
        """Return the recorded start, or None if the hold is not being tracked."""
        pass

    @abstractmethod
    def set(self, reservation_id: str, start: float):
        pass

    @abstractmethod
    def delete(self, reservation_id: str):
        """Forget the record. Deleting an unknown id is a no-op."""
        pass

    @abstractmethod
    def all(self) -> Dict[str, float]:
        pass


class InMemoryCountdownStore(CountdownStore):
    """Non-persistent store for tests and throwaway sessions."""

    def __init__(self, records: Optional[Dict[str, float]] = None):
        self.records: Dict[str, float] = dict(records or {})

    def get(self, reservation_id: str) -> Optional[float]:
        return self.records.get(reservation_id)

    def set(self, reservation_id: str, start: float):
        self.records[reservation_id] = start

    def delete(self, reservation_id: str):
        self.records.pop(reservation_id, None)

    def all(self) -> Dict[str, float]:
        return dict(self.records)


class JsonFileCountdownStore(CountdownStore):
    """
    Durable store backed by a small JSON file, so a restart of the client
    picks up the same hold start times.

    The file is re-read on every access; several client processes pointing at
    the same state directory see each other's records.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> Dict[str, float]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError(f"expected an object, got {type(data).__name__}")
            return {str(k): float(v) for k, v in data.items()}
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Unreadable countdown file {self.path}: {e}. Starting empty.")
            return {}

    def _save(self, records: Dict[str, float]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(records, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)

    def get(self, reservation_id: str) -> Optional[float]:
        return self._load().get(reservation_id)

    def set(self, reservation_id: str, start: float):
        records = self._load()
        records[reservation_id] = start
        self._save(records)

    def delete(self, reservation_id: str):
        records = self._load()
        if records.pop(reservation_id, None) is not None:
            self._save(records)

    def all(self) -> Dict[str, float]:
        return self._load()
