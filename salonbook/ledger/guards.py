"""Per-entity guard against re-entrant saves."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Hashable, Iterator

from .errors import OperationInProgressError

logger = logging.getLogger(__name__)


class PendingOperations:
    """Set of entity keys with an operation in flight.

    The coordinator itself is stateless, so a duplicate submit for the same
    activity is refused here, where save and delete actions come in.
    """

    def __init__(self) -> None:
        self._pending: set[Hashable] = set()
        self._lock = threading.Lock()

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._pending

    @contextmanager
    def guard(self, key: Hashable) -> Iterator[None]:
        with self._lock:
            if key in self._pending:
                logger.warning("Rejected concurrent operation on %s", key)
                raise OperationInProgressError(f"An operation on {key} is already in progress")
            self._pending.add(key)
        try:
            yield
        finally:
            with self._lock:
                self._pending.discard(key)
