"""Shared service-layer exceptions."""

from __future__ import annotations

from typing import Optional


class CadenceError(Exception):
    """Base class for every error raised by the prompt worker."""


class ValidationFailure(CadenceError):
    """Caller input rejected before any generation work started."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class GenerationFailure(CadenceError):
    """Fatal failure of the initial LLM generation call."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status = status


class InvariantViolation(CadenceError):
    """Internal contract breach, e.g. drawing from an empty table."""


class ProviderError(CadenceError):
    """A single failed provider HTTP attempt."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retryable: bool = False,
        request_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.request_id = request_id


class StorageFailure(CadenceError):
    """History or config persistence could not be read or written."""
