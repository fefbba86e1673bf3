"""
Core exceptions for the FlowGate orchestration layer.

This module provides the exception hierarchy shared by the launcher, the
status tracker, the result retriever and every backend client. Transport
failures are translated into these types at the backend client boundary, so
nothing above that layer has to know about ``requests``.
"""

from typing import Any, Dict, Optional


class FlowgateError(Exception):
    """Base exception for all FlowGate errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        return self.message


class ConfigurationError(FlowgateError):
    """
    Raised when a module or server binding is missing or unusable.

    Fatal for the current request; raised before any network I/O.
    """

    pass


class ParameterValidationError(FlowgateError):
    """
    Raised when module parameters cannot be bound from the form input.

    Attributes:
        field_errors: Mapping of parameter key to a human-readable error,
            rendered as form errors by the API layer.

    Example:
        try:
            params = binder.bind(module, dataset, form)
        except ParameterValidationError as e:
            for key, error in e.field_errors.items():
                print(f"{key}: {error}")
    """

    def __init__(
        self,
        message: str,
        field_errors: Optional[Dict[str, str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.field_errors = field_errors or {}
        super().__init__(message, details)


class MissingDatasetError(ParameterValidationError):
    """Raised when a required dataset-typed parameter has no files to bind."""

    pass


class BackendError(FlowgateError):
    """Base class for failures reported by a backend client."""

    pass


class SubmissionError(BackendError):
    """
    Raised when a backend rejects a job or cannot be reached at submit time.

    Submission is one-shot: the launcher records the failure on the Analysis
    and never retries.
    """

    pass


class TransientError(BackendError):
    """
    Raised when a backend cannot be reached while polling or fetching.

    Callers skip the affected Analysis and keep its stored status.
    """

    pass


class NotFoundError(BackendError):
    """
    Raised when a remote job or artifact no longer exists.

    ``details["gone"]`` is True when the backend answered 410.
    """

    pass


class NoResultError(FlowgateError):
    """
    User-facing "no result" condition for result retrieval.

    Always rendered as an inline message, never as a server error.
    """

    DEFAULT_MESSAGE = "No result file found to download!"

    def __init__(
        self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message or self.DEFAULT_MESSAGE, details)


class AnalysisStoreError(FlowgateError):
    """Base exception for analysis store operations."""

    pass


class AnalysisNotFoundError(AnalysisStoreError):
    """Raised when an analysis row is not found."""

    pass


class StaleWriteError(AnalysisStoreError):
    """Raised when a compare-and-swap write loses against a newer version."""

    pass
