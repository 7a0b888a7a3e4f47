# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Record CRUD operations namespace."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Union, TYPE_CHECKING

from ..core.results import OperationResult

if TYPE_CHECKING:
    from ..client import DataverseClient


class RecordOperations:
    """
    Record CRUD operations. The same method handles one record or many,
    depending on the argument types.

    Accessed via ``client.records``.

    Example::

        ids = client.records.create("account", {"name": "Contoso"})
        client.records.update("account", ids[0], {"telephone1": "555-0100"})
        record = client.records.get("account", ids[0], select=["name"])
        client.records.delete("account", ids[0])

        # Bulk
        ids = client.records.create("account", [{"name": "A"}, {"name": "B"}])
        client.records.update("account", list(ids), {"statecode": 1})
        client.records.delete("account", list(ids))
    """

    def __init__(self, client: "DataverseClient") -> None:
        self._client = client

    def create(
        self,
        table: str,
        data: Union[Dict[str, Any], List[Dict[str, Any]]],
    ) -> OperationResult[List[str]]:
        """
        Create one or more records.

        A dict is posted to the table's entity set; a list goes through the
        ``CreateMultiple`` action in one request.

        :param table: Table logical or schema name (e.g. ``"account"``, ``"new_Order"``).
        :type table: str
        :param data: Single record dict or list of record dicts.
        :type data: dict or list[dict]
        :return: OperationResult containing the list of created record GUIDs.
        :rtype: OperationResult[List[str]]

        :raises TypeError: If ``data`` is not a dict or list[dict].
        """
        if not isinstance(data, (dict, list)):
            raise TypeError("data must be dict or list[dict]")
        with self._client._scoped_odata() as od:
            ids = od._create(table, data)
            return OperationResult(ids, od._last_metadata())

    def get(
        self,
        table: str,
        record_id: str,
        select: Optional[Sequence[str]] = None,
    ) -> OperationResult[Dict[str, Any]]:
        """
        Retrieve one record by GUID or alternate key (``"name='Contoso'"``).

        :param select: Columns to return; all columns when omitted.
        :type select: list[str] or None
        """
        with self._client._scoped_odata() as od:
            record = od._get(table, record_id, select=select)
            return OperationResult(record, od._last_metadata())

    def update(
        self,
        table: str,
        ids: Union[str, List[str]],
        changes: Union[Dict[str, Any], List[Dict[str, Any]]],
    ) -> OperationResult[None]:
        """
        Update one or more records.

        Supports three patterns:

        1. Single: ``update(table, "guid", {changes})``
        2. Broadcast: ``update(table, [id1, id2], {same_changes})``
        3. Paired: ``update(table, [id1, id2], [changes1, changes2])``

        :raises TypeError: If ``ids`` is a str and ``changes`` is not a dict.
        :raises ValueError: If paired lists differ in length.
        """
        with self._client._scoped_odata() as od:
            if isinstance(ids, str):
                if not isinstance(changes, dict):
                    raise TypeError("For single id, changes must be a dict")
                od._update(table, ids, changes)
            elif isinstance(ids, list):
                od._update_by_ids(table, ids, changes)
            else:
                raise TypeError("ids must be str or list[str]")
            return OperationResult(None, od._last_metadata())

    def delete(self, table: str, ids: Union[str, List[str]]) -> OperationResult[None]:
        """Delete one record, or each record of a list in turn."""
        with self._client._scoped_odata() as od:
            if isinstance(ids, str):
                od._delete(table, ids)
            elif isinstance(ids, list):
                for rid in ids:
                    od._delete(table, rid)
            else:
                raise TypeError("ids must be str or list[str]")
            return OperationResult(None, od._last_metadata())
