# tenant_billing/services/locks.py
"""
Keyed exclusivity scopes for read-modify-replace writes.

At most one allocation recompute runs per utility charge, and writes to one
billing period summary are serialized.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Generator, Hashable

from ..config import BillingConfig
from ..errors import ConcurrentModificationError

logger = logging.getLogger(__name__)


class LockRegistry:
    """
    Hands out one lock per key; acquiring past the timeout raises.

    A key's lock is dropped once nobody holds or waits on it.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        # key -> [lock, number of holders and waiters]
        self._locks: Dict[Hashable, list] = {}
        self._guard = threading.Lock()

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable, timeout: float = None) -> Generator[None, None, None]:
        lock = self._checkout(key)
        wait = self.timeout if timeout is None else timeout
        try:
            if not lock.acquire(timeout=wait):
                logger.warning("Could not acquire %s within %ss", key, wait)
                raise ConcurrentModificationError(
                    f"{key} is being recomputed by another request",
                    key=str(key),
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def is_held(self, key: Hashable) -> bool:
        with self._guard:
            entry = self._locks.get(key)
        return entry is not None and entry[0].locked()

    def __len__(self):
        with self._guard:
            return len(self._locks)


registry = LockRegistry(timeout=BillingConfig.LOCK_TIMEOUT_SECONDS)


def charge_scope(charge_id, timeout=None):
    return registry.hold(('utility_charge', charge_id), timeout=timeout)


def period_scope(property_id, month, year, timeout=None):
    return registry.hold(('billing_period', property_id, month, year), timeout=timeout)
