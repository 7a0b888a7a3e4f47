# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Table and column definition operations namespace."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union, TYPE_CHECKING

from ..core.errors import ValidationError
from ..core.results import OperationResult
from ..models.columns import Column, LookupColumn, PolymorphicLookupColumn, TextColumn, column_from_spec
from ..models.metadata import Label

if TYPE_CHECKING:
    from ..client import DataverseClient
    from ..data._odata import _ODataClient


__all__ = ["TableOperations"]

ColumnsSpec = Union[Mapping[str, Any], Sequence[Column]]


def _to_pascal(name: str) -> str:
    parts = re.split(r"[^A-Za-z0-9]+", name)
    return "".join(p[:1].upper() + p[1:] for p in parts if p)


def _new_table_schema_name(table: str) -> str:
    """Schema name for a table about to be created: prefixed names pass through, friendly names get ``new_``."""
    return table if "_" in table else f"new_{_to_pascal(table)}"


def _publisher(schema_name: str) -> str:
    return schema_name.split("_", 1)[0] if "_" in schema_name else "new"


class TableOperations:
    """Namespace for table-level metadata operations.

    Accessed via ``client.tables``.

    Example::

        info = client.tables.create(
            "new_Product",
            {"new_Price": "money", "new_InStock": "bool"},
            solution="MySolution",
        )
        client.tables.add_columns("new_Product", [LookupColumn("new_SupplierId", target_table="account")])
        client.tables.remove_columns("new_Product", ["new_InStock"])
        client.tables.delete("new_Product")
    """

    def __init__(self, client: "DataverseClient") -> None:
        self._client = client

    # ----------------------------------------------------------------- create

    def create(
        self,
        table: str,
        columns: Optional[ColumnsSpec] = None,
        *,
        solution: Optional[str] = None,
        primary_column: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> OperationResult[Dict[str, Any]]:
        """Create a custom table with the given columns.

        Plain columns are sent with the table definition. Lookup columns need the
        table to exist and are created right after it, one relationship each.

        :param table: Schema name with customization prefix (``"new_Product"``). A
            name without prefix is mapped to ``new_<PascalCase>``.
        :type table: str
        :param columns: ``{schema_name: spec}`` with shorthand specs (see
            :func:`~dataverse_commands.models.columns.column_from_spec`), or a list of
            :class:`~dataverse_commands.models.columns.Column` objects.
        :param solution: Unique name of the solution that receives the table.
        :type solution: str or None
        :param primary_column: Schema name of the primary name column. Defaults to ``<prefix>_Name``.
        :type primary_column: str or None
        :param display_name: Display label. Defaults to the table name.
        :type display_name: str or None
        :return: Summary with ``entity_schema``, ``entity_logical_name``, ``entity_set_name``,
            ``metadata_id``, ``columns_created`` and ``lookups_created``.

        :raises ~dataverse_commands.core.errors.MetadataError: If the table already exists.
        :raises ~dataverse_commands.core.errors.ValidationError: For unsupported column specs.
        """
        schema_name = _new_table_schema_name(table)
        prefix = _publisher(schema_name)
        resolved = self._resolve_columns(prefix, columns)
        plain = [c for c in resolved if not c.creates_relationship]
        lookups = [c for c in resolved if c.creates_relationship]

        label = display_name or table
        with self._client._scoped_odata() as od:
            lang = int(od.config.language_code)
            primary = TextColumn(primary_column or f"{prefix}_Name", required_level="None", is_primary_name=True)
            payload = {
                "@odata.type": "Microsoft.Dynamics.CRM.EntityMetadata",
                "SchemaName": schema_name,
                "DisplayName": Label.of(label, lang).to_dict(),
                "DisplayCollectionName": Label.of(label + "s", lang).to_dict(),
                "Description": Label.of(f"Custom entity for {label}", lang).to_dict(),
                "OwnershipType": "UserOwned",
                "HasActivities": False,
                "HasNotes": True,
                "IsActivity": False,
                "Attributes": [primary.to_payload(lang)] + [c.to_payload(lang) for c in plain],
            }
            ent = od._create_entity(payload, solution)
            logical = ent.get("LogicalName") or schema_name.lower()
            created_lookups = [self._create_lookup(od, logical, c, solution) for c in lookups]
            return OperationResult(
                {
                    "entity_schema": ent.get("SchemaName") or schema_name,
                    "entity_logical_name": logical,
                    "entity_set_name": ent.get("EntitySetName"),
                    "metadata_id": ent.get("MetadataId"),
                    "primary_name_attribute": primary.schema_name,
                    "columns_created": [c.schema_name for c in plain],
                    "lookups_created": created_lookups,
                },
                od._last_metadata(),
            )

    # ----------------------------------------------------------------- delete

    def delete(self, table: str) -> None:
        """Delete a custom table by logical or schema name.

        :raises ~dataverse_commands.core.errors.MetadataError: If the table does not exist.
        """
        with self._client._scoped_odata() as od:
            od._delete_table(table)

    # -------------------------------------------------------------------- get

    def get(self, table: str) -> Optional[Dict[str, Any]]:
        """Return basic metadata for a table, or ``None`` if it does not exist."""
        with self._client._scoped_odata() as od:
            ent = od._get_entity(table)
        if not ent:
            return None
        return {
            "entity_schema": ent.get("SchemaName") or table,
            "entity_logical_name": ent.get("LogicalName"),
            "entity_set_name": ent.get("EntitySetName"),
            "metadata_id": ent.get("MetadataId"),
            "primary_id_attribute": ent.get("PrimaryIdAttribute"),
            "primary_name_attribute": ent.get("PrimaryNameAttribute"),
        }

    # ------------------------------------------------------------------- list

    def list(self) -> List[Dict[str, Any]]:
        """List all non-private tables."""
        with self._client._scoped_odata() as od:
            return od._list_tables()

    # ---------------------------------------------------------------- columns

    def add_columns(
        self,
        table: str,
        columns: ColumnsSpec,
        *,
        solution: Optional[str] = None,
    ) -> List[str]:
        """Add columns to an existing table; return the created schema names in order.

        :param table: Logical or schema name of the table, used as given (``"account"``,
            ``"new_Product"``).
        :param columns: Same forms as :meth:`create`. Mapping keys without a publisher
            prefix take the table's prefix, or ``new`` for system tables.
        """
        resolved = self._resolve_columns(_publisher(table), columns)
        if not resolved:
            raise ValidationError("At least one column is required")
        created: List[str] = []
        with self._client._scoped_odata() as od:
            for column in resolved:
                self._create_one(od, table, column, solution)
                created.append(column.schema_name)
        return created

    def create_column(
        self,
        table: str,
        column: Union[Column, Tuple[str, Any]],
        *,
        solution: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a single column.

        :param column: A :class:`Column`, or a ``(schema_name, spec)`` pair.
        :return: ``{"schema_name", "kind", ...}`` plus the ids returned by the service.
        """
        if not isinstance(column, Column):
            name, spec = column
            column = column_from_spec(name, spec)
        with self._client._scoped_odata() as od:
            result = self._create_one(od, table, column, solution)
        return {"schema_name": column.schema_name, "kind": column.kind, **result}

    def remove_columns(self, table: str, columns: Union[str, List[str]]) -> List[str]:
        """Delete columns by logical or schema name; return the removed names.

        :raises ~dataverse_commands.core.errors.MetadataError: If a column does not exist.
        """
        names = [columns] if isinstance(columns, str) else list(columns)
        if not names:
            raise ValidationError("At least one column name is required")
        with self._client._scoped_odata() as od:
            for name in names:
                od._delete_attribute(table, name)
        return names

    # ---------------------------------------------------------------- helpers

    @staticmethod
    def _resolve_columns(prefix: str, columns: Optional[ColumnsSpec]) -> List[Column]:
        if not columns:
            return []
        if isinstance(columns, Mapping):
            resolved = []
            for name, spec in columns.items():
                schema = name if name.lower().startswith(f"{prefix.lower()}_") else f"{prefix}_{_to_pascal(name)}"
                resolved.append(column_from_spec(schema, spec))
            return resolved
        return [column_from_spec(getattr(c, "schema_name", str(c)), c) for c in columns]

    def _create_one(self, od: "_ODataClient", table: str, column: Column, solution: Optional[str]) -> Dict[str, Any]:
        if column.creates_relationship:
            ent = od._require_entity(table)
            return self._create_lookup(od, ent.get("LogicalName") or table.lower(), column, solution)
        metadata_id = od._create_attribute(table, column.to_payload(int(od.config.language_code)), solution)
        return {"metadata_id": metadata_id}

    @staticmethod
    def _create_lookup(od: "_ODataClient", referencing: str, column: Column, solution: Optional[str]) -> Dict[str, Any]:
        lang = int(od.config.language_code)
        if isinstance(column, PolymorphicLookupColumn):
            attrs = {t.lower(): od._primary_id_attr(t) for t in column.target_tables}
            payload = column.to_payload(lang, referencing_entity=referencing, referenced_attributes=attrs)
            return od._create_polymorphic_lookup(payload, solution)
        if isinstance(column, LookupColumn):
            payload = column.to_payload(
                lang,
                referencing_entity=referencing,
                referenced_attribute=od._primary_id_attr(column.target_table),
            )
            return od._create_lookup(payload, solution)
        raise ValidationError(f"Column '{column.schema_name}' does not create a relationship")
