"""Per-order serialization lock.

Two deliveries for the same order (a payment success and a near-simultaneous
dispute, say) must not interleave, or the validator could check a state that
is already stale. Locks are scoped to one order so unrelated orders proceed
in parallel.

The lock itself is a named-lock capability with two implementations:
- InProcessLockProvider: keyed ``threading.Lock`` for single-node deployments
- DynamoDBLockProvider: lease rows with owner tokens, for multiple processes
"""

import hashlib
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterator, Protocol, TypeVar

from orderflow.models import LockTimeoutError, PipelineError
from orderflow.services.tables import LOCKS_TABLE
from orderflow.utils.logging import get_logger

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = get_logger(__name__)

T = TypeVar("T")


def lock_key(order_id: str) -> str:
    """Hash an order id into its lock key."""
    digest = hashlib.sha256(order_id.encode()).hexdigest()
    return f"order-{digest[:32]}"


@dataclass(frozen=True)
class LockHandle:
    """Proof of a held lock, passed back to ``release``."""

    key: str
    token: str = field(default_factory=lambda: uuid.uuid4().hex)


class LockProvider(Protocol):
    """Named-lock capability."""

    def acquire(self, key: str, timeout: float) -> LockHandle:
        """Acquire ``key`` within ``timeout`` seconds or raise LockTimeoutError."""
        ...

    def release(self, handle: LockHandle) -> None:
        """Release a lock obtained from ``acquire``."""
        ...


class InProcessLockProvider:
    """Keyed mutex for a single process.

    Entries are reference counted so the table does not grow with every
    order ever seen.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, tuple[threading.Lock, int]] = {}
        self._owners: dict[str, str] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock, refs = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, refs + 1)
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            lock, refs = self._locks[key]
            if refs <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, refs - 1)

    def acquire(self, key: str, timeout: float) -> LockHandle:
        lock = self._checkout(key)
        if not lock.acquire(timeout=timeout):
            self._checkin(key)
            raise LockTimeoutError(details={"lock_key": key, "timeout": timeout})

        handle = LockHandle(key=key)
        with self._guard:
            self._owners[key] = handle.token
        return handle

    def release(self, handle: LockHandle) -> None:
        with self._guard:
            if self._owners.get(handle.key) != handle.token:
                raise RuntimeError(f"Lock {handle.key} is not held by this handle")
            del self._owners[handle.key]
            lock, _ = self._locks[handle.key]
        lock.release()
        self._checkin(handle.key)

    def is_locked(self, key: str) -> bool:
        with self._guard:
            return key in self._owners


class DynamoDBLockProvider:
    """Lease-based lock stored as rows in the locks table.

    A row holds the owner token and an expiry. A crashed holder's lease
    expires after ``lease_seconds`` and the lock can be taken over. Release
    only deletes the row if the caller still owns it.
    """

    def __init__(
        self,
        db: "DynamoDBService",
        lease_seconds: int = 30,
        poll_interval_ms: int = 50,
    ) -> None:
        """Initialize the lock provider.

        Args:
            db: DynamoDB service instance
            lease_seconds: How long a lock is held before it may be taken over
            poll_interval_ms: Delay between acquisition attempts
        """
        self.db = db
        self.lease_seconds = lease_seconds
        self.poll_interval = poll_interval_ms / 1000

    def _try_acquire(self, handle: LockHandle) -> bool:
        now = int(time.time())
        return self.db.put_item(
            LOCKS_TABLE,
            {
                "lock_key": handle.key,
                "owner": handle.token,
                "acquired_at": now,
                "expires_at": now + self.lease_seconds,
            },
            condition_expression="attribute_not_exists(lock_key) OR expires_at < :now",
            expression_attribute_values={":now": now},
        )

    def acquire(self, key: str, timeout: float) -> LockHandle:
        handle = LockHandle(key=key)
        deadline = time.monotonic() + timeout
        while True:
            if self._try_acquire(handle):
                return handle
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LockTimeoutError(details={"lock_key": key, "timeout": timeout})
            time.sleep(min(self.poll_interval, remaining))

    def release(self, handle: LockHandle) -> None:
        released = self.db.delete_item(
            LOCKS_TABLE,
            {"lock_key": handle.key},
            condition_expression="#owner = :owner",
            expression_attribute_values={":owner": handle.token},
            expression_attribute_names={"#owner": "owner"},  # owner is reserved word
        )
        if not released:
            logger.warning(
                "Lock %s was taken over before release (lease expired)", handle.key
            )


@contextmanager
def order_lock(
    provider: LockProvider, order_id: str, timeout: float
) -> Iterator[LockHandle]:
    """Hold the lock for ``order_id`` for the duration of the block.

    A release that fails on storage is logged and left to lease expiry, so
    it never replaces the outcome of the block.

    Raises:
        LockTimeoutError: If the lock is not acquired within ``timeout``.
    """
    handle = provider.acquire(lock_key(order_id), timeout)
    try:
        yield handle
    finally:
        try:
            provider.release(handle)
        except PipelineError as e:
            logger.error("Failed to release lock %s, leaving it to expire: %s", handle.key, e)


def with_order_lock(
    provider: LockProvider,
    order_id: str,
    timeout: float,
    fn: Callable[[], T],
) -> T:
    """Run ``fn`` while holding the lock for ``order_id``.

    The lock is released on every exit path, including exceptions.

    Raises:
        LockTimeoutError: If the lock is not acquired within ``timeout``.
    """
    with order_lock(provider, order_id, timeout):
        return fn()
