"""Exception hierarchy for transcript ingestion.

Classifier misses are not errors: classifier functions return ``None``.
"""
from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ParseError(LedgerError):
    """A single transcript line could not be read. Skip it and continue."""


class SourceUnavailable(LedgerError):
    """A watched transcript file or directory disappeared."""


class CheckpointWriteFailure(LedgerError):
    """The durable checkpoint write failed; the in-memory checkpoint must not advance."""
