# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Web API access layer: the paginated fetcher and the low-level OData client.
"""

from ._paging import (
    CancellationToken,
    FetchRequest,
    FetchResult,
    Page,
    PaginatedFetcher,
    RetryState,
    fetch_all,
)

__all__ = [
    "CancellationToken",
    "FetchRequest",
    "FetchResult",
    "Page",
    "PaginatedFetcher",
    "RetryState",
    "fetch_all",
]
