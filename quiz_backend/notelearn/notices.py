"""Transient user-facing notices, collected for the next response to show."""
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, List


logger = logging.getLogger(__name__)

MAX_PENDING_NOTICES = 50


@dataclass
class Notice:
    message: str
    level: str = "info"
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class Notifier:
    """Bounded queue of notices; the oldest are dropped once it is full."""

    def __init__(self, maxlen: int = MAX_PENDING_NOTICES) -> None:
        self._pending: Deque[Notice] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    def notify(self, message: str) -> None:
        logger.info("Notice: %s", message)
        self._push(Notice(message=message))

    def warn(self, message: str) -> None:
        logger.warning("Notice: %s", message)
        self._push(Notice(message=message, level="warning"))

    def drain(self) -> List[Notice]:
        """Return pending notices oldest first and clear the queue."""
        with self._lock:
            notices = list(self._pending)
            self._pending.clear()
        return notices

    def _push(self, notice: Notice) -> None:
        with self._lock:
            self._pending.append(notice)
