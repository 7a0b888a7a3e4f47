# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import requests

from azure.core.credentials import TokenCredential

from .core._auth import _AuthManager
from .core.config import DataverseConfig
from .core.results import OperationResult
from .data._odata import _ODataClient
from .operations.metadata import MetadataOperations
from .operations.query import QueryOperations
from .operations.records import RecordOperations
from .operations.tables import TableOperations


class DataverseClient:
    """
    High-level client for Microsoft Dataverse operations.

    Operations are organized under namespaces:

    - ``client.records``: record CRUD (create, get, update, delete)
    - ``client.query``: paged retrieval of whole tables and collections
    - ``client.tables``: table and column definitions
    - ``client.metadata``: metadata inspection and global option sets

    HTTP work is delegated to an internal
    :class:`~dataverse_commands.data._odata._ODataClient`, created lazily on first use.

    **Context Manager Support (Recommended)**:
        Using the client as a context manager reuses one HTTP session for every
        request and releases it on exit::

            with DataverseClient(base_url, credential) as client:
                ids = client.records.create("account", {"name": "Contoso"})

    **Without Context Manager**::

            client = DataverseClient(base_url, credential)
            try:
                result = client.query.fetch_all("account", select=["name"])
            finally:
                client.close()

    :param base_url: Your Dataverse environment URL, for example
        ``"https://org.crm.dynamics.com"``. Trailing slash is automatically removed.
    :type base_url: :class:`str`
    :param credential: Token credential, e.g. from Azure Identity or
        :class:`~dataverse_commands.core._auth.ClientSecretTokenCredential`.
    :type credential: ~azure.core.credentials.TokenCredential
    :param config: Optional configuration for language, timeouts, retries and paging.
        If not provided, defaults are loaded from
        :meth:`~dataverse_commands.core.config.DataverseConfig.from_env`.
    :type config: ~dataverse_commands.core.config.DataverseConfig or None

    :raises ValueError: If ``base_url`` is missing or empty after trimming.
    """

    def __init__(
        self,
        base_url: str,
        credential: TokenCredential,
        config: Optional[DataverseConfig] = None,
    ) -> None:
        self.auth = _AuthManager(credential)
        self._base_url = (base_url or "").rstrip("/")
        if not self._base_url:
            raise ValueError("base_url is required.")
        self._config = config or DataverseConfig.from_env()
        self._odata: Optional[_ODataClient] = None
        self._session: Optional[requests.Session] = None
        self._owns_session: bool = False

        self.records = RecordOperations(self)
        self.query = QueryOperations(self)
        self.tables = TableOperations(self)
        self.metadata = MetadataOperations(self)

    @property
    def base_url(self) -> str:
        return self._base_url

    def __enter__(self) -> "DataverseClient":
        if self._session is None:
            self._session = requests.Session()
            self._owns_session = True
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """
        Close the client and release resources. Safe to call multiple times.
        """
        if self._odata is not None:
            self._odata.close()
            self._odata = None
        if self._session is not None and self._owns_session:
            self._session.close()
            self._session = None
            self._owns_session = False

    def _get_odata(self) -> _ODataClient:
        """
        Get or create the internal OData client instance.

        When a session exists (from the context manager), it is passed to the
        OData client for connection pooling.
        """
        if self._odata is None:
            self._odata = _ODataClient(
                self.auth,
                self._base_url,
                self._config,
                session=self._session,
            )
        return self._odata

    @contextmanager
    def _scoped_odata(self) -> Iterator[_ODataClient]:
        """Yield the low-level client while ensuring a correlation scope is active."""
        od = self._get_odata()
        with od._call_scope():
            yield od

    def get_token(self) -> str:
        """Return a bearer token for this environment's ``.default`` scope."""
        return self._get_odata()._token()

    def invoke_request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> OperationResult[Any]:
        """
        Send an arbitrary Web API request.

        :param method: HTTP method, e.g. ``"GET"`` or ``"POST"``.
        :type method: str
        :param path: Path relative to ``/api/data/v9.2`` (``"WhoAmI"``) or an absolute URL.
        :type path: str
        :param params: Query string parameters.
        :type params: dict or None
        :param body: JSON body.
        :param headers: Extra headers, merged over the standard OData headers.
        :type headers: dict or None
        :return: Decoded JSON body, ``{"id": guid}`` for create-style responses
            without a body, or ``None``.

        :raises ~dataverse_commands.core.errors.HttpError: On a non-2xx response.

        Example::

            who = client.invoke_request("GET", "WhoAmI")
            print(who["UserId"])
        """
        with self._scoped_odata() as od:
            result = od._invoke(method, path, params=params, json=body, headers=headers)
            return OperationResult(result, od._last_metadata())


__all__ = ["DataverseClient"]
