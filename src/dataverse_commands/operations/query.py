# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Paged query operations namespace."""

from __future__ import annotations

from typing import Iterator, List, Optional, TYPE_CHECKING

from ..core.config import MAX_PAGE_SIZE
from ..data._paging import CancellationToken, FetchRequest, FetchResult, Page

if TYPE_CHECKING:
    from ..client import DataverseClient
    from ..data._odata import _ODataClient


class QueryOperations:
    """
    Retrieval of whole collections through the paginated fetcher.

    Accessed via ``client.query``. Every page request carries the
    ``Prefer: odata.maxpagesize`` hint, continuation links are followed until the
    server stops returning one, and throttling (429) or server (5xx) failures are
    retried per page. Retries are logged through the client's telemetry.

    Example::

        result = client.query.fetch_all("account", select=["name"], filter="statecode eq 0")
        print(f"{len(result.records)} records in {result.page_count} pages")

        for page in client.query.pages("contact", page_size=200):
            handle(page.records)

        tables = client.query.fetch_collection("EntityDefinitions", select=["LogicalName"])
    """

    def __init__(self, client: "DataverseClient") -> None:
        self._client = client

    def fetch_all(
        self,
        table: str,
        *,
        select: Optional[List[str]] = None,
        filter: Optional[str] = None,
        orderby: Optional[List[str]] = None,
        expand: Optional[List[str]] = None,
        top: Optional[int] = None,
        page_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> FetchResult:
        """
        Fetch every record of a table.

        :param table: Table logical or schema name; resolved to its entity set.
        :type table: str
        :param select: Columns to retrieve (lowercased).
        :type select: list[str] or None
        :param filter: OData filter expression.
        :type filter: str or None
        :param orderby: Sort expressions, e.g. ``["createdon desc"]``.
        :type orderby: list[str] or None
        :param expand: Navigation properties to expand.
        :type expand: list[str] or None
        :param top: Maximum number of records across all pages.
        :type top: int or None
        :param page_size: Page-size hint, 1..5000. Defaults to the configured value or 5000.
        :type page_size: int or None
        :param max_retries: Per-page retry budget. Defaults to ``config.fetch_max_retries``.
        :type max_retries: int or None
        :param cancel: Token to stop the fetch from another thread or after a deadline.
        :type cancel: ~dataverse_commands.data._paging.CancellationToken or None
        :return: All records in server order and the number of pages fetched.
        :rtype: ~dataverse_commands.data._paging.FetchResult

        :raises ~dataverse_commands.core.errors.ConfigurationError: For invalid paging parameters.
        :raises ~dataverse_commands.core.errors.RequestFailed: On a non-transient failure.
        :raises ~dataverse_commands.core.errors.RetryExhausted: When a page keeps failing transiently.
        :raises ~dataverse_commands.core.errors.Cancelled: When ``cancel`` fires.
        """
        with self._client._scoped_odata() as od:
            request = self._table_request(
                od, table, select, filter, orderby, expand, top, page_size, max_retries
            )
            return od._page_fetcher("query.fetch_all", table).fetch_all(request, cancel=cancel)

    def pages(
        self,
        table: str,
        *,
        select: Optional[List[str]] = None,
        filter: Optional[str] = None,
        orderby: Optional[List[str]] = None,
        expand: Optional[List[str]] = None,
        top: Optional[int] = None,
        page_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> Iterator[Page]:
        """
        Yield pages of a table lazily. Parameters match :meth:`fetch_all`.

        Nothing is requested until the first page is consumed.
        """
        with self._client._scoped_odata() as od:
            request = self._table_request(
                od, table, select, filter, orderby, expand, top, page_size, max_retries
            )
            yield from od._page_fetcher("query.pages", table).iter_pages(request, cancel=cancel)

    def fetch_collection(
        self,
        collection_name: str,
        *,
        select: Optional[List[str]] = None,
        filter: Optional[str] = None,
        orderby: Optional[List[str]] = None,
        expand: Optional[List[str]] = None,
        top: Optional[int] = None,
        page_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> FetchResult:
        """
        Fetch a raw collection path under the Web API root, such as ``EntityDefinitions``
        or an entity set name, without table resolution. Column names are sent as given.
        """
        with self._client._scoped_odata() as od:
            request = self._request(
                od, collection_name, select, filter, orderby, expand, top, page_size, max_retries
            )
            return od._page_fetcher("query.fetch_collection").fetch_all(request, cancel=cancel)

    def _table_request(self, od: "_ODataClient", table: str, select, filter, orderby, expand, top, page_size, max_retries):
        entity_set = od._entity_set(table)
        select = [c.lower() for c in select] if select else None
        return self._request(od, entity_set, select, filter, orderby, expand, top, page_size, max_retries)

    @staticmethod
    def _request(
        od: "_ODataClient",
        collection_name: str,
        select: Optional[List[str]],
        filter: Optional[str],
        orderby: Optional[List[str]],
        expand: Optional[List[str]],
        top: Optional[int],
        page_size: Optional[int],
        max_retries: Optional[int],
    ) -> FetchRequest:
        config = od.config
        return FetchRequest(
            base_address=od.api,
            collection_name=collection_name,
            page_size=page_size if page_size is not None else (
                config.page_size if config.page_size is not None else MAX_PAGE_SIZE
            ),
            max_retries=max_retries if max_retries is not None else config.fetch_max_retries,
            credential=od._token(),
            select=select,
            filter=filter,
            orderby=orderby,
            expand=expand,
            top=top,
        )
