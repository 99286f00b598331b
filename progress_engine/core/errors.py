"""Error taxonomy for the progress engine.

Each kind is recovered at a different distance from its origin:

  VALIDATION    malformed record or argument; rejected at the boundary
  AGGREGATION   unexpected shape during computation; zeroed summary returned
  SYNC          cache read/write failure; logged, loop continues
  ORCHESTRATOR  remote write or reload failure; returned as a result object
  CANCELLED     result discarded because the session signed out

Aggregators return ``Result`` instead of raising, so "never throws" is
part of their signature rather than a convention.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AGGREGATION = "aggregation"
    SYNC = "sync"
    ORCHESTRATOR = "orchestrator"
    CANCELLED = "cancelled"


class ProgressError(Exception):
    kind: ErrorKind = ErrorKind.ORCHESTRATOR


class ValidationError(ProgressError, ValueError):
    kind = ErrorKind.VALIDATION


class AggregationError(ProgressError):
    kind = ErrorKind.AGGREGATION


class SyncError(ProgressError):
    kind = ErrorKind.SYNC


class OrchestratorError(ProgressError):
    kind = ErrorKind.ORCHESTRATOR


@dataclass(frozen=True, slots=True)
class Result(Generic[T]):
    """A value that is always well-formed, plus what went wrong producing it.

    value:  the computed value, or a zeroed default when ``error`` is set
    error:  the kind of failure, None on success
    detail: human-readable description of the failure
    """

    value: T
    error: ErrorKind | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
