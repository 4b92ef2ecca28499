"""
Session Guard
=============

Single-flight admission control for high-level driver operations.

Only one operation may drive the board at a time: two interleaved raw
REPL exchanges would read each other's replies. The guard admits one
operation and handles the others according to a BusyPolicy:

- REJECT: the call returns at once with status REJECTED
- QUEUE: the call waits its turn, in arrival order

Either way the caller gets an OperationResult and can tell a rejected
call apart from one that ran.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from picolink.comms.session import SessionState
from picolink.config import BusyPolicy
from picolink.errors import ConnectionError, SessionBusyError

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationStatus(Enum):
    COMPLETED = "completed"
    REJECTED = "rejected"   # Session busy, the operation never started
    ABORTED = "aborted"     # The session disconnected before or during it


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """
    Outcome of a guarded operation.

    Attributes:
        status: How the operation ended
        value: The operation's return value (COMPLETED only)
        reason: Explanation for REJECTED and ABORTED
    """

    status: OperationStatus
    value: Optional[T] = None
    reason: str = ""

    @classmethod
    def completed(cls, value: Optional[T] = None) -> "OperationResult[T]":
        return cls(OperationStatus.COMPLETED, value)

    @classmethod
    def rejected(cls, reason: str) -> "OperationResult[T]":
        return cls(OperationStatus.REJECTED, reason=reason)

    @classmethod
    def aborted(cls, reason: str) -> "OperationResult[T]":
        return cls(OperationStatus.ABORTED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.status is OperationStatus.COMPLETED

    def unwrap(self) -> Optional[T]:
        """
        Return the value of a completed operation.

        Raises:
            SessionBusyError: If the operation was rejected.
            ConnectionError: If the operation was aborted by a disconnect.
        """
        if self.status is OperationStatus.REJECTED:
            raise SessionBusyError(self.reason)
        if self.status is OperationStatus.ABORTED:
            raise ConnectionError(self.reason)
        return self.value


class SessionGuard:
    """
    Admits one operation at a time.

    Example:
        >>> guard = SessionGuard(state, BusyPolicy.REJECT)
        >>> result = await guard.run("delete", lambda: transfer.delete(path))
        >>> if result.status is OperationStatus.REJECTED:
        ...     print("Board is busy, try again")
    """

    def __init__(self, state: SessionState, policy: BusyPolicy = BusyPolicy.REJECT):
        self.state = state
        self.policy = policy
        self._lock = asyncio.Lock()
        self._generation = 0

    @property
    def busy(self) -> bool:
        return self.state.busy

    async def run(
        self,
        name: str,
        operation: Callable[[], Awaitable[T]],
        require_connection: bool = True,
    ) -> OperationResult[T]:
        """
        Run operation if (or once) the session is free.

        Args:
            name: Operation name, used in logs and result reasons.
            operation: Zero-argument coroutine function doing the work.
            require_connection: Abort at once when the session is disconnected.

        Returns:
            OperationResult describing how the operation ended. Exceptions
            raised by operation propagate after the busy flag is cleared.
        """
        if self.policy is BusyPolicy.REJECT and self.state.busy:
            logger.info("Rejected %s: session busy", name)
            return OperationResult.rejected(f"{name}: session busy")

        async with self._lock:
            if require_connection and self.state.disconnected:
                return OperationResult.aborted(f"{name}: not connected")

            self.state.busy = True
            generation = self._generation
            logger.debug("Started %s", name)
            try:
                value = await operation()
            finally:
                # A reset() during the operation already cleared the flag
                if generation == self._generation:
                    self.state.busy = False

            if self.state.disconnected:
                logger.info("%s aborted: disconnected", name)
                return OperationResult.aborted(f"{name}: disconnected")

            logger.debug("Finished %s", name)
            return OperationResult.completed(value)

    def reset(self) -> None:
        """Clear the busy flag after a disconnect."""
        self._generation += 1
        self.state.busy = False
