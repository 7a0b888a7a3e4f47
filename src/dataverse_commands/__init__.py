# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Dataverse command library: paged retrieval, record, table and metadata
operations against the Microsoft Dataverse Web API, plus the ``dataverse`` CLI.
"""

__version__ = "0.1.0"

from .client import DataverseClient
from .data._paging import CancellationToken, FetchRequest, FetchResult, Page, PaginatedFetcher, RetryState, fetch_all

__all__ = [
    "__version__",
    "DataverseClient",
    "CancellationToken",
    "FetchRequest",
    "FetchResult",
    "Page",
    "PaginatedFetcher",
    "RetryState",
    "fetch_all",
]
