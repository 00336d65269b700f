import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple


@dataclass(frozen=True)
class PendingRecord:
    chat_id: int
    user_id: int
    answer: str
    expires_at: float  # monotonic seconds
    photo_message_id: int
    test_mode: bool = False


class VerificationRegistry:
    """In-memory user id -> pending challenge map.

    Records are never mutated; every transition is an insert or a removal
    under ``_lock``, which is never held across I/O.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._lock = threading.Lock()
        self._clock = clock
        self._data: Dict[int, PendingRecord] = {}

    def set(self, user_id: int, record: PendingRecord) -> None:
        with self._lock:
            self._data[user_id] = record

    def get(self, user_id: int) -> Tuple[Optional[PendingRecord], bool]:
        with self._lock:
            record = self._data.get(user_id)
        return record, record is not None

    def delete(self, user_id: int) -> None:
        with self._lock:
            self._data.pop(user_id, None)

    def take(self, user_id: int, record: PendingRecord) -> bool:
        # only the caller that removes this exact record gets True
        with self._lock:
            if self._data.get(user_id) is not record:
                return False
            del self._data[user_id]
            return True

    def is_expired(self, user_id: int) -> bool:
        now = self._clock()
        with self._lock:
            record = self._data.get(user_id)
        if record is None:
            return True
        return now >= record.expires_at

    def sweep(self, grace: float = 0.0) -> int:
        horizon = self._clock() - grace
        removed = 0
        with self._lock:
            for k in list(self._data.keys()):
                if self._data[k].expires_at <= horizon:
                    del self._data[k]
                    removed += 1
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
