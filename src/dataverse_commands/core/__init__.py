# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Core infrastructure: configuration, HTTP transport, authentication, errors,
telemetry and result types.
"""

from .config import DataverseConfig
from .errors import (
    DataverseError,
    HttpError,
    ValidationError,
    ConfigurationError,
    MetadataError,
    AuthenticationError,
    EnvironmentListError,
    FetchError,
    RequestFailed,
    RetryExhausted,
    Cancelled,
)
from .results import RequestMetadata, DataverseResponse, OperationResult

__all__ = [
    "DataverseConfig",
    "DataverseError",
    "HttpError",
    "ValidationError",
    "ConfigurationError",
    "MetadataError",
    "AuthenticationError",
    "EnvironmentListError",
    "FetchError",
    "RequestFailed",
    "RetryExhausted",
    "Cancelled",
    "RequestMetadata",
    "DataverseResponse",
    "OperationResult",
]
