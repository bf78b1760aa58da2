"""
Typed outcomes returned by pipeline operations and job handlers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Outcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    STRUCTURAL_MISMATCH = "structural_mismatch"
    POLICY_DECLINED = "policy_declined"
    FATAL = "fatal"


class FailureKind(str, Enum):
    """Attribution for failed placement operations."""

    SOURCE_NOT_FOUND = "source_not_found"
    DESTINATION_CONFLICT = "destination_conflict"
    FILESYSTEM_BUSY = "filesystem_busy"
    FILESYSTEM_ERROR = "filesystem_error"


@dataclass(frozen=True)
class OperationResult:
    """Outcome of an operation plus a human-readable detail."""

    outcome: Outcome
    detail: str = ""
    failure: Optional[FailureKind] = None

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    @classmethod
    def success(cls, detail: str = "") -> "OperationResult":
        return cls(Outcome.SUCCESS, detail)

    @classmethod
    def retryable(cls, detail: str, failure: Optional[FailureKind] = None) -> "OperationResult":
        return cls(Outcome.RETRYABLE, detail, failure)

    @classmethod
    def structural(cls, detail: str, failure: Optional[FailureKind] = None) -> "OperationResult":
        return cls(Outcome.STRUCTURAL_MISMATCH, detail, failure)

    @classmethod
    def declined(cls, detail: str = "", failure: Optional[FailureKind] = None) -> "OperationResult":
        return cls(Outcome.POLICY_DECLINED, detail, failure)

    @classmethod
    def fatal(cls, detail: str, failure: Optional[FailureKind] = None) -> "OperationResult":
        return cls(Outcome.FATAL, detail, failure)
