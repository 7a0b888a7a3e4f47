# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Metadata inspection and global option set operations namespace."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, TYPE_CHECKING

from ..core import _error_codes as ec
from ..core.errors import MetadataError
from ..models.columns import OptionsSpec, build_options, display_from_schema
from ..models.metadata import Label, OptionSetMetadata

if TYPE_CHECKING:
    from ..client import DataverseClient


__all__ = ["MetadataOperations"]


class MetadataOperations:
    """
    Read table and column definitions; manage global option sets.

    Accessed via ``client.metadata``.

    Example::

        table = client.metadata.get_table("account", select=["LogicalName", "EntitySetName"])
        columns = client.metadata.get_columns("account", select=["LogicalName", "AttributeType"])

        client.metadata.create_option_set("new_priority", {1: "Low", 2: "High"})
        client.tables.create_column("new_Ticket", ChoiceColumn("new_Priority", global_option_set="new_priority"))
    """

    def __init__(self, client: "DataverseClient") -> None:
        self._client = client

    def get_table(self, table: str, select: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        """Return the full ``EntityDefinitions`` row for a table.

        :raises ~dataverse_commands.core.errors.MetadataError: If the table does not exist.
        """
        with self._client._scoped_odata() as od:
            return od._get_table_metadata(table, select=select)

    def get_columns(self, table: str, select: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        """Return the attribute definitions of a table."""
        with self._client._scoped_odata() as od:
            return od._get_attributes(table, select=select)

    def get_column(self, table: str, column: str) -> Dict[str, Any]:
        """Return one attribute definition.

        :raises ~dataverse_commands.core.errors.MetadataError: If the column does not exist.
        """
        with self._client._scoped_odata() as od:
            attr = od._get_attribute(table, column)
        if attr is None:
            raise MetadataError(
                f"Column '{column}' not found on table '{table}'.",
                subcode=ec.METADATA_COLUMN_NOT_FOUND,
            )
        return attr

    def create_option_set(
        self,
        name: str,
        options: OptionsSpec,
        *,
        display_name: Optional[str] = None,
        solution: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a global option set.

        :param name: Option set name with customization prefix, e.g. ``"new_priority"``.
        :type name: str
        :param options: ``{value: label}`` or ``[(value, label), ...]``; labels may be
            ``{language_code: text}`` mappings for translations.
        :param display_name: Display label. Derived from the name when omitted.
        :type display_name: str or None
        :param solution: Unique name of the solution that receives the option set.
        :type solution: str or None
        :return: ``{"name": ..., "metadata_id": ...}``
        """
        with self._client._scoped_odata() as od:
            lang = int(od.config.language_code)
            payload = OptionSetMetadata(
                build_options(options, lang),
                is_global=True,
                name=name,
                display_name=Label.of(display_name or display_from_schema(name), lang),
            ).to_dict()
            metadata_id = od._create_global_option_set(payload, solution)
        return {"name": name, "metadata_id": metadata_id}

    def get_option_set(self, name: str) -> Optional[Dict[str, Any]]:
        """Return a global option set definition, or ``None`` if it does not exist."""
        with self._client._scoped_odata() as od:
            return od._get_global_option_set(name)

    def list_option_sets(self) -> List[Dict[str, Any]]:
        with self._client._scoped_odata() as od:
            return od._list_global_option_sets()

    def delete_option_set(self, name: str) -> None:
        """Delete a global option set by name.

        :raises ~dataverse_commands.core.errors.MetadataError: If it does not exist.
        """
        with self._client._scoped_odata() as od:
            od._delete_global_option_set(name)
