"""
Secure Mint Idempotency Store

Maps transactionId to the WorkflowResult of the run that owns it, with
first-writer-wins semantics:

    claim(tid)        ACQUIRED   caller owns the run
                      IN_FLIGHT  another run holds the claim
                      COMPLETED  a cached result exists (replay)
    complete(tid, r)  cache the result of an owned run
    release(tid)      drop an owned claim without caching

Only results whose run committed a ledger write should be completed;
everything else is released so the caller may retry with the same id.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ClaimState(str, Enum):
    ACQUIRED = "ACQUIRED"
    IN_FLIGHT = "IN_FLIGHT"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class Claim:
    state: ClaimState
    result: Optional[Any] = None


class IdempotencyStore(ABC):
    """Abstract interface for transactionId deduplication."""

    @abstractmethod
    def claim(self, transaction_id: str) -> Claim:
        """Atomically claim a transactionId or report who holds it."""
        pass

    @abstractmethod
    def complete(self, transaction_id: str, result: Any) -> None:
        """Cache the terminal result for a claimed transactionId."""
        pass

    @abstractmethod
    def release(self, transaction_id: str) -> None:
        """Drop a claim that produced nothing worth replaying."""
        pass


_IN_FLIGHT = object()


class InMemoryIdempotencyStore(IdempotencyStore):
    """
    In-memory idempotency store.

    WARNING: Not suitable for production.
    - Not persistent (restarts forget every transactionId)
    - Not distributed (multiple instances do not share claims)
    """

    def __init__(self):
        self._entries: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def claim(self, transaction_id: str) -> Claim:
        with self._lock:
            if transaction_id not in self._entries:
                self._entries[transaction_id] = _IN_FLIGHT
                return Claim(ClaimState.ACQUIRED)
            entry = self._entries[transaction_id]
            if entry is _IN_FLIGHT:
                return Claim(ClaimState.IN_FLIGHT)
            return Claim(ClaimState.COMPLETED, entry)

    def complete(self, transaction_id: str, result: Any) -> None:
        with self._lock:
            self._entries[transaction_id] = result

    def release(self, transaction_id: str) -> None:
        with self._lock:
            if self._entries.get(transaction_id) is _IN_FLIGHT:
                del self._entries[transaction_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
