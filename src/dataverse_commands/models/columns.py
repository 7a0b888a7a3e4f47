# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Column definitions for table creation.

Each column kind is its own dataclass with a ``kind`` tag and a ``to_payload``
method producing the attribute metadata the Web API expects. Plain attribute
kinds are posted to ``EntityDefinitions(...)/Attributes`` or embedded in a new
table definition; :class:`LookupColumn` and :class:`PolymorphicLookupColumn`
create relationships and are posted to their own endpoints.

Example::

    columns = [
        TextColumn("new_Title", max_length=100),
        IntegerColumn("new_Quantity"),
        ChoiceColumn.from_enum("new_Status", Status),
        LookupColumn("new_AccountId", target_table="account"),
    ]
    client.tables.create("new_Order", columns)

Shorthand specs are accepted too::

    client.tables.create("new_Order", {"new_Title": "string", "new_Quantity": "int"})
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..core import _error_codes as ec
from ..core.errors import ValidationError
from .metadata import (
    CascadeConfiguration,
    Label,
    LookupAttributeMetadata,
    OneToManyRelationshipMetadata,
    OptionMetadata,
    OptionSetMetadata,
)

_INT_MIN = -2147483648
_INT_MAX = 2147483647
_DECIMAL_LIMIT = 100000000000.0
_MONEY_LIMIT = 922337203685477.0


def display_from_schema(schema_name: str) -> str:
    """Derive a display label from a schema name: ``new_OrderDate`` -> ``Order Date``."""
    base = schema_name.split("_", 1)[-1] if "_" in schema_name else schema_name
    spaced = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", base)
    return spaced.replace("_", " ").strip() or schema_name


@dataclass
class Column:
    """
    Common fields of every column kind.

    :param schema_name: Column schema name including the publisher prefix, e.g. ``"new_Title"``.
    :type schema_name: str
    :param display_name: Display label; derived from the schema name when omitted.
    :type display_name: str or None
    :param description: Optional description.
    :type description: str or None
    :param required_level: ``"None"``, ``"Recommended"`` or ``"ApplicationRequired"``.
    :type required_level: str
    """

    kind: ClassVar[str] = ""
    odata_type: ClassVar[str] = ""
    creates_relationship: ClassVar[bool] = False

    schema_name: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    required_level: str = "None"

    @property
    def logical_name(self) -> str:
        return self.schema_name.lower()

    def _base(self, language_code: int) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "@odata.type": f"Microsoft.Dynamics.CRM.{self.odata_type}",
            "SchemaName": self.schema_name,
            "DisplayName": Label.of(self.display_name or display_from_schema(self.schema_name), language_code).to_dict(),
            "RequiredLevel": {"Value": self.required_level},
        }
        if self.description:
            payload["Description"] = Label.of(self.description, language_code).to_dict()
        return payload

    def to_payload(self, language_code: int = 1033) -> Dict[str, Any]:
        return self._base(language_code)


@dataclass
class TextColumn(Column):
    kind: ClassVar[str] = "string"
    odata_type: ClassVar[str] = "StringAttributeMetadata"

    max_length: int = 200
    format_name: str = "Text"
    is_primary_name: bool = False

    def to_payload(self, language_code: int = 1033) -> Dict[str, Any]:
        payload = self._base(language_code)
        payload["MaxLength"] = self.max_length
        payload["FormatName"] = {"Value": self.format_name}
        payload["IsPrimaryName"] = bool(self.is_primary_name)
        return payload


@dataclass
class MemoColumn(Column):
    kind: ClassVar[str] = "memo"
    odata_type: ClassVar[str] = "MemoAttributeMetadata"

    max_length: int = 2000

    def to_payload(self, language_code: int = 1033) -> Dict[str, Any]:
        payload = self._base(language_code)
        payload["MaxLength"] = self.max_length
        payload["Format"] = "TextArea"
        payload["ImeMode"] = "Auto"
        return payload


@dataclass
class IntegerColumn(Column):
    kind: ClassVar[str] = "int"
    odata_type: ClassVar[str] = "IntegerAttributeMetadata"

    min_value: int = _INT_MIN
    max_value: int = _INT_MAX

    def to_payload(self, language_code: int = 1033) -> Dict[str, Any]:
        payload = self._base(language_code)
        payload["Format"] = "None"
        payload["MinValue"] = self.min_value
        payload["MaxValue"] = self.max_value
        return payload


@dataclass
class DecimalColumn(Column):
    kind: ClassVar[str] = "decimal"
    odata_type: ClassVar[str] = "DecimalAttributeMetadata"

    precision: int = 2
    min_value: float = -_DECIMAL_LIMIT
    max_value: float = _DECIMAL_LIMIT

    def to_payload(self, language_code: int = 1033) -> Dict[str, Any]:
        payload = self._base(language_code)
        payload["MinValue"] = self.min_value
        payload["MaxValue"] = self.max_value
        payload["Precision"] = self.precision
        return payload


@dataclass
class FloatColumn(DecimalColumn):
    kind: ClassVar[str] = "float"
    odata_type: ClassVar[str] = "DoubleAttributeMetadata"


@dataclass
class MoneyColumn(Column):
    kind: ClassVar[str] = "money"
    odata_type: ClassVar[str] = "MoneyAttributeMetadata"

    precision: int = 2
    # 0: fixed precision, 1: organization pricing precision, 2: currency precision
    precision_source: int = 2
    min_value: float = -_MONEY_LIMIT
    max_value: float = _MONEY_LIMIT

    def to_payload(self, language_code: int = 1033) -> Dict[str, Any]:
        payload = self._base(language_code)
        payload["MinValue"] = self.min_value
        payload["MaxValue"] = self.max_value
        payload["Precision"] = self.precision
        payload["PrecisionSource"] = self.precision_source
        return payload


@dataclass
class BooleanColumn(Column):
    kind: ClassVar[str] = "bool"
    odata_type: ClassVar[str] = "BooleanAttributeMetadata"

    true_label: str = "True"
    false_label: str = "False"

    def to_payload(self, language_code: int = 1033) -> Dict[str, Any]:
        payload = self._base(language_code)
        payload["OptionSet"] = {
            "@odata.type": "Microsoft.Dynamics.CRM.BooleanOptionSetMetadata",
            "TrueOption": {"Value": 1, "Label": Label.of(self.true_label, language_code).to_dict()},
            "FalseOption": {"Value": 0, "Label": Label.of(self.false_label, language_code).to_dict()},
            "IsGlobal": False,
        }
        return payload


@dataclass
class DateTimeColumn(Column):
    """Date or date-time column. ``format`` is ``"DateOnly"`` or ``"DateAndTime"``."""

    kind: ClassVar[str] = "datetime"
    odata_type: ClassVar[str] = "DateTimeAttributeMetadata"

    format: str = "DateOnly"
    behavior: str = "UserLocal"

    def to_payload(self, language_code: int = 1033) -> Dict[str, Any]:
        payload = self._base(language_code)
        payload["Format"] = self.format
        payload["ImeMode"] = "Inactive"
        payload["DateTimeBehavior"] = {"Value": self.behavior}
        return payload


OptionsSpec = Union[Mapping[int, Any], Sequence[Tuple[int, Any]]]


def build_options(options: OptionsSpec, language_code: int) -> List[OptionMetadata]:
    """
    Normalize option input into :class:`OptionMetadata` objects sorted by value.

    ``options`` is ``{value: label}`` or a sequence of ``(value, label)`` pairs, where a
    label is a string or a ``{language_code: text}`` mapping.
    """
    pairs = list(options.items()) if isinstance(options, Mapping) else list(options)
    if not pairs:
        raise ValidationError("At least one option is required", subcode=ec.VALIDATION_EMPTY_OPTIONS)
    result: List[OptionMetadata] = []
    for value, text in pairs:
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError(f"Option value {value!r} must be int", subcode=ec.VALIDATION_ENUM_NON_INT_VALUE)
        if isinstance(text, Mapping):
            label = Label.from_translations(text)
        else:
            label = Label.of(str(text), language_code)
        result.append(OptionMetadata(value, label))
    return sorted(result, key=lambda o: o.value)


@dataclass
class ChoiceColumn(Column):
    """
    Single-select choice column.

    Give either ``options`` for a local option set, or ``global_option_set`` to bind
    the column to an existing global option set by name.
    """

    kind: ClassVar[str] = "choice"
    odata_type: ClassVar[str] = "PicklistAttributeMetadata"

    options: Optional[OptionsSpec] = None
    global_option_set: Optional[str] = None
    is_primary_name: bool = False

    @classmethod
    def from_enum(cls, schema_name: str, enum_cls: type, **kwargs: Any) -> "ChoiceColumn":
        """
        Build a local choice column from an ``Enum`` subclass with int values.

        Translations may be supplied through a ``__labels__`` class attribute::

            class Status(IntEnum):
                ACTIVE = 1
                INACTIVE = 2
                __labels__ = {1036: {"ACTIVE": "Actif", "INACTIVE": "Inactif"}}

        Members without a translation fall back to the member name.
        """
        return cls(schema_name, options=enum_options(enum_cls), **kwargs)

    def to_payload(self, language_code: int = 1033) -> Dict[str, Any]:
        payload = self._base(language_code)
        payload["IsPrimaryName"] = bool(self.is_primary_name)
        if self.global_option_set:
            payload["GlobalOptionSet@odata.bind"] = f"/GlobalOptionSetDefinitions(Name='{self.global_option_set}')"
            return payload
        if self.options is None:
            raise ValidationError(
                f"Choice column '{self.schema_name}' needs options or a global option set",
                subcode=ec.VALIDATION_EMPTY_OPTIONS,
            )
        payload["OptionSet"] = OptionSetMetadata(build_options(self.options, language_code)).to_dict()
        return payload


def enum_options(enum_cls: type) -> List[Tuple[int, Any]]:
    """Return ``(value, label)`` pairs for an int-valued ``Enum``, honouring ``__labels__``."""
    members = list(enum_cls)
    if not members:
        raise ValidationError(f"Enum {enum_cls.__name__} has no members", subcode=ec.VALIDATION_ENUM_NO_MEMBERS)
    for m in members:
        if not isinstance(m.value, int) or isinstance(m.value, bool):
            raise ValidationError(
                f"Enum member '{m.name}' has non-int value '{m.value}' (only int values supported)",
                subcode=ec.VALIDATION_ENUM_NON_INT_VALUE,
            )

    raw = getattr(enum_cls, "__labels__", None) or {}
    if not isinstance(raw, Mapping):
        raise ValidationError("__labels__ must be a dict {lang:int -> {member: label}}")
    by_lang: Dict[int, Dict[str, str]] = {}
    for lang, mapping in raw.items():
        if not isinstance(mapping, Mapping):
            raise ValidationError(f"__labels__[{lang}] must be a dict of member names to strings")
        by_lang[lang] = {(k.name if isinstance(k, Enum) else str(k)): v for k, v in mapping.items()}

    pairs: List[Tuple[int, Any]] = []
    for m in members:
        if not by_lang:
            pairs.append((m.value, m.name))
        else:
            pairs.append((m.value, {lang: labels.get(m.name, m.name) for lang, labels in by_lang.items()}))
    return pairs


@dataclass
class LookupColumn(Column):
    """
    Lookup to a single table, created as a one-to-many relationship.

    :param target_table: Logical name of the referenced table, e.g. ``"account"``.
    :param relationship_name: Relationship schema name; derived from both tables when omitted.
    """

    kind: ClassVar[str] = "lookup"
    odata_type: ClassVar[str] = "LookupAttributeMetadata"
    creates_relationship: ClassVar[bool] = True

    target_table: str = ""
    relationship_name: Optional[str] = None
    cascade: CascadeConfiguration = field(default_factory=CascadeConfiguration)

    def _lookup(self, language_code: int, targets: Optional[List[str]] = None) -> LookupAttributeMetadata:
        return LookupAttributeMetadata(
            schema_name=self.schema_name,
            display_name=Label.of(self.display_name or display_from_schema(self.schema_name), language_code),
            description=Label.of(self.description, language_code) if self.description else None,
            required_level=self.required_level,
            targets=targets,
        )

    def _relationship(self, target: str, referencing_entity: str, referenced_attribute: str) -> OneToManyRelationshipMetadata:
        prefix = self.schema_name.split("_", 1)[0] if "_" in self.schema_name else "new"
        name = self.relationship_name or f"{prefix}_{target}_{referencing_entity}_{self.logical_name}"
        return OneToManyRelationshipMetadata(
            schema_name=name,
            referenced_entity=target,
            referencing_entity=referencing_entity,
            referenced_attribute=referenced_attribute,
            cascade_configuration=self.cascade,
        )

    def to_payload(
        self,
        language_code: int = 1033,
        *,
        referencing_entity: str = "",
        referenced_attribute: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return the ``RelationshipDefinitions`` body with the lookup attribute embedded."""
        if not self.target_table:
            raise ValidationError(f"Lookup column '{self.schema_name}' needs a target_table")
        target = self.target_table.lower()
        payload = self._relationship(
            target, referencing_entity, referenced_attribute or f"{target}id"
        ).to_dict()
        payload["Lookup"] = self._lookup(language_code).to_dict()
        return payload


@dataclass
class PolymorphicLookupColumn(LookupColumn):
    """
    Lookup that may reference several tables, created through ``CreatePolymorphicLookupAttribute``.

    :param target_tables: Logical names of every table the lookup may reference.
    """

    kind: ClassVar[str] = "polymorphic_lookup"

    target_tables: Sequence[str] = ()

    def to_payload(
        self,
        language_code: int = 1033,
        *,
        referencing_entity: str = "",
        referenced_attributes: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """Return the ``CreatePolymorphicLookupAttribute`` action body."""
        targets = [t.lower() for t in self.target_tables]
        if len(targets) < 2:
            raise ValidationError(f"Polymorphic lookup '{self.schema_name}' needs at least two target tables")
        attrs = referenced_attributes or {}
        relationships = []
        for target in targets:
            rel = self._relationship(target, referencing_entity, attrs.get(target, f"{target}id"))
            if self.relationship_name:
                # One relationship per target; names must be unique
                rel.schema_name = f"{self.relationship_name}_{target}"
            relationships.append(rel.to_dict())
        return {
            "OneToManyRelationships": relationships,
            "Lookup": self._lookup(language_code, targets).to_dict(),
        }


_SHORTHAND: Dict[str, type] = {
    "string": TextColumn,
    "text": TextColumn,
    "memo": MemoColumn,
    "multiline": MemoColumn,
    "int": IntegerColumn,
    "integer": IntegerColumn,
    "decimal": DecimalColumn,
    "money": MoneyColumn,
    "currency": MoneyColumn,
    "float": FloatColumn,
    "double": FloatColumn,
    "datetime": DateTimeColumn,
    "date": DateTimeColumn,
    "bool": BooleanColumn,
    "boolean": BooleanColumn,
}


def column_from_spec(schema_name: str, spec: Any) -> Column:
    """
    Map a column spec to a :class:`Column`.

    :param schema_name: Column schema name.
    :param spec: A :class:`Column` (returned as-is), a shorthand type string such as
        ``"string"``, ``"int"``, ``"decimal"``, ``"money"``, ``"float"``, ``"datetime"``,
        ``"bool"`` or ``"memo"``, or an int-valued ``Enum`` subclass.
    :raises ~dataverse_commands.core.errors.ValidationError: For unsupported specs.
    """
    if isinstance(spec, Column):
        return spec
    if isinstance(spec, type) and issubclass(spec, Enum):
        return ChoiceColumn.from_enum(schema_name, spec)
    if isinstance(spec, str):
        column_cls = _SHORTHAND.get(spec.strip().lower())
        if column_cls is not None:
            return column_cls(schema_name)
    raise ValidationError(
        f"Unsupported column type {spec!r} for '{schema_name}'",
        subcode=ec.VALIDATION_UNSUPPORTED_COLUMN_TYPE,
        details={"column": schema_name},
    )


__all__ = [
    "Column",
    "TextColumn",
    "MemoColumn",
    "IntegerColumn",
    "DecimalColumn",
    "MoneyColumn",
    "FloatColumn",
    "BooleanColumn",
    "DateTimeColumn",
    "ChoiceColumn",
    "LookupColumn",
    "PolymorphicLookupColumn",
    "build_options",
    "enum_options",
    "column_from_spec",
    "display_from_schema",
]
