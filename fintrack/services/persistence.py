"""
Background Persistence

DESIGN DECISION: The ledger mutates its in-memory state first and returns
immediately. The durable write is handed to a PersistenceWriter, which runs
it on its own event loop thread:

- Writes run one at a time, in the order they were submitted
- A failed write is logged and recorded in `failures`; it never rolls back
  the in-memory state and is not retried here
- Callers that care can hold on to the returned Future or call flush()

Retries belong to the storage adapter (see google_sheets.py).
"""

import asyncio
import threading
import time
from concurrent.futures import Future, wait
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel, Field


logger = structlog.get_logger()


class PersistenceFailure(BaseModel):
    """A durable write that did not complete."""

    operation: str
    error_type: str
    error_message: str
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PersistenceWriter:
    """
    Serialised fire-and-forget executor for async storage calls.

    Usage:
        writer = PersistenceWriter()
        writer.submit("add_transaction", lambda: storage.add_transaction(tx))
        writer.flush()
        writer.close()
    """

    def __init__(
        self,
        on_failure: Optional[Callable[[str, Exception], None]] = None,
        name: str = "fintrack-persistence",
    ):
        self.on_failure = on_failure
        self.failures: list[PersistenceFailure] = []

        self._loop = asyncio.new_event_loop()
        self._lock = asyncio.Lock()
        self._pending: set[Future] = set()
        self._guard = threading.Lock()
        self._closed = False

        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    @property
    def pending(self) -> int:
        """Number of writes not yet finished."""
        with self._guard:
            return sum(1 for f in self._pending if not f.done())

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(
        self,
        operation: str,
        factory: Callable[[], Awaitable[object]],
    ) -> Future:
        """
        Schedule a storage call and return without waiting for it.

        Args:
            operation: Name used in logs and failure records
            factory: Zero-argument callable returning the coroutine to run

        Raises:
            RuntimeError: If the writer has been closed
        """
        if self._closed:
            raise RuntimeError("PersistenceWriter is closed")

        future = asyncio.run_coroutine_threadsafe(
            self._execute(operation, factory),
            self._loop,
        )
        with self._guard:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._guard:
            self._pending.discard(future)

    async def _execute(
        self,
        operation: str,
        factory: Callable[[], Awaitable[object]],
    ) -> object:
        async with self._lock:
            try:
                return await factory()
            except Exception as e:
                self._record_failure(operation, e)
                raise

    def _record_failure(self, operation: str, error: Exception) -> None:
        self.failures.append(
            PersistenceFailure(
                operation=operation,
                error_type=type(error).__name__,
                error_message=str(error),
            )
        )
        logger.error(
            "persistence_failed",
            operation=operation,
            error_type=type(error).__name__,
            error=str(error),
        )
        if self.on_failure:
            try:
                self.on_failure(operation, error)
            except Exception as callback_error:
                logger.error(
                    "persistence_failure_callback_failed",
                    operation=operation,
                    error=str(callback_error),
                )

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every submitted write has finished.

        Writes submitted while flushing (e.g. audit events for failures)
        are waited for too.

        Returns:
            True if nothing is pending when this returns
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._guard:
                pending = {f for f in self._pending if not f.done()}
            if not pending:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            wait(pending, timeout=remaining)

    def close(self, timeout: Optional[float] = None) -> bool:
        """Flush pending writes, then stop the loop thread."""
        if self._closed:
            return True
        flushed = self.flush(timeout)
        self._closed = True
        if not flushed:
            logger.warning("persistence_close_with_pending_writes", pending=self.pending)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout)
        if not self._thread.is_alive():
            self._loop.close()
        return flushed
