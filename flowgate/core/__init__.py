"""
FlowGate core: analysis lifecycle, persistence and the exception hierarchy.
"""

from flowgate.core.exceptions import (
    AnalysisNotFoundError,
    AnalysisStoreError,
    BackendError,
    ConfigurationError,
    FlowgateError,
    MissingDatasetError,
    NoResultError,
    NotFoundError,
    ParameterValidationError,
    StaleWriteError,
    SubmissionError,
    TransientError,
)

__all__ = [
    "AnalysisNotFoundError",
    "AnalysisStoreError",
    "BackendError",
    "ConfigurationError",
    "FlowgateError",
    "MissingDatasetError",
    "NoResultError",
    "NotFoundError",
    "ParameterValidationError",
    "StaleWriteError",
    "SubmissionError",
    "TransientError",
]
