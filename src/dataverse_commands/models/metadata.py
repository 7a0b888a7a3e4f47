# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Metadata entity types for Microsoft Dataverse.

These classes mirror the metadata complex types accepted by the Web API when
defining tables, columns, option sets and relationships. Each one serializes to
its Web API JSON form through ``to_dict()``.

See: https://learn.microsoft.com/en-us/power-apps/developer/data-platform/webapi/reference/metadataentitytypes
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..core import _error_codes as ec
from ..core.errors import ValidationError


@dataclass
class LocalizedLabel:
    """
    A label text in one language.

    :param label: The text of the label.
    :type label: str
    :param language_code: The language code (LCID), e.g. 1033 for English.
    :type language_code: int
    """

    label: str
    language_code: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "@odata.type": "Microsoft.Dynamics.CRM.LocalizedLabel",
            "Label": self.label,
            "LanguageCode": self.language_code,
        }


@dataclass
class Label:
    """
    A label with one or more localized versions.

    The first localized label doubles as ``UserLocalizedLabel`` in the payload.
    """

    localized_labels: List[LocalizedLabel]

    @classmethod
    def of(cls, text: str, language_code: int) -> "Label":
        """Single-language label."""
        return cls([LocalizedLabel(text, int(language_code))])

    @classmethod
    def from_translations(cls, translations: Mapping[int, str]) -> "Label":
        """
        Build a label from ``{language_code: text}`` entries.

        :raises ~dataverse_commands.core.errors.ValidationError: If a code is not an int,
            a text is empty, or no entries are given.
        """
        labels: List[LocalizedLabel] = []
        for lang, text in translations.items():
            if not isinstance(lang, int) or isinstance(lang, bool):
                raise ValidationError(f"Language code '{lang}' must be int")
            if not isinstance(text, str) or not text.strip():
                raise ValidationError(f"Label for lang {lang} must be non-empty string")
            labels.append(LocalizedLabel(text, lang))
        if not labels:
            raise ValidationError("At least one translation required")
        return cls(labels)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "@odata.type": "Microsoft.Dynamics.CRM.Label",
            "LocalizedLabels": [ll.to_dict() for ll in self.localized_labels],
        }
        if self.localized_labels:
            result["UserLocalizedLabel"] = self.localized_labels[0].to_dict()
        return result


@dataclass
class OptionMetadata:
    """One choice of an option set: integer value plus label."""

    value: int
    label: Label

    def to_dict(self) -> Dict[str, Any]:
        return {
            "@odata.type": "Microsoft.Dynamics.CRM.OptionMetadata",
            "Value": self.value,
            "Label": self.label.to_dict(),
        }


@dataclass
class OptionSetMetadata:
    """
    A local or global option set.

    :param options: Choices in display order.
    :type options: List[OptionMetadata]
    :param is_global: Whether the option set is a global (shared) definition.
    :type is_global: bool
    :param name: Name of a global option set. Ignored for local sets.
    :type name: Optional[str]
    :param display_name: Display label, required by the service for global sets.
    :type display_name: Optional[Label]
    """

    options: List[OptionMetadata]
    is_global: bool = False
    name: Optional[str] = None
    display_name: Optional[Label] = None

    def to_dict(self) -> Dict[str, Any]:
        if not self.options:
            raise ValidationError("An option set needs at least one option", subcode=ec.VALIDATION_EMPTY_OPTIONS)
        values = [o.value for o in self.options]
        if len(set(values)) != len(values):
            raise ValidationError(f"Duplicate option values in {values}")
        result: Dict[str, Any] = {
            "@odata.type": "Microsoft.Dynamics.CRM.OptionSetMetadata",
            "IsGlobal": self.is_global,
            "OptionSetType": "Picklist",
            "Options": [o.to_dict() for o in self.options],
        }
        if self.is_global:
            if not self.name:
                raise ValidationError("A global option set needs a name")
            result["Name"] = self.name
        if self.display_name is not None:
            result["DisplayName"] = self.display_name.to_dict()
        return result


@dataclass
class CascadeConfiguration:
    """
    Cascade behavior of a one-to-many relationship.

    Valid values: ``"Cascade"``, ``"NoCascade"``, ``"RemoveLink"``, ``"Restrict"``.
    """

    assign: str = "NoCascade"
    delete: str = "RemoveLink"
    merge: str = "NoCascade"
    reparent: str = "NoCascade"
    share: str = "NoCascade"
    unshare: str = "NoCascade"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Assign": self.assign,
            "Delete": self.delete,
            "Merge": self.merge,
            "Reparent": self.reparent,
            "Share": self.share,
            "Unshare": self.unshare,
        }


@dataclass
class LookupAttributeMetadata:
    """
    The lookup column created alongside a one-to-many relationship.

    :param schema_name: Schema name for the attribute (e.g. ``"new_AccountId"``).
    :param display_name: Display label.
    :param required_level: ``"None"``, ``"Recommended"`` or ``"ApplicationRequired"``.
    :param targets: For polymorphic lookups, the logical names the lookup may reference.
    """

    schema_name: str
    display_name: Label
    description: Optional[Label] = None
    required_level: str = "None"
    targets: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "@odata.type": "Microsoft.Dynamics.CRM.LookupAttributeMetadata",
            "SchemaName": self.schema_name,
            "AttributeType": "Lookup",
            "AttributeTypeName": {"Value": "LookupType"},
            "DisplayName": self.display_name.to_dict(),
            "RequiredLevel": {
                "Value": self.required_level,
                "CanBeChanged": True,
                "ManagedPropertyLogicalName": "canmodifyrequirementlevelsettings",
            },
        }
        if self.description:
            result["Description"] = self.description.to_dict()
        if self.targets:
            result["Targets"] = list(self.targets)
        return result


@dataclass
class OneToManyRelationshipMetadata:
    """
    A one-to-many relationship between a referenced (parent) and referencing (child) table.

    :param schema_name: Relationship schema name (e.g. ``"new_account_new_order"``).
    :param referenced_entity: Logical name of the parent table.
    :param referencing_entity: Logical name of the child table that holds the lookup.
    :param referenced_attribute: Primary key attribute of the parent table.
    """

    schema_name: str
    referenced_entity: str
    referencing_entity: str
    referenced_attribute: str
    cascade_configuration: CascadeConfiguration = field(default_factory=CascadeConfiguration)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "@odata.type": "Microsoft.Dynamics.CRM.OneToManyRelationshipMetadata",
            "SchemaName": self.schema_name,
            "ReferencedEntity": self.referenced_entity,
            "ReferencingEntity": self.referencing_entity,
            "ReferencedAttribute": self.referenced_attribute,
            "CascadeConfiguration": self.cascade_configuration.to_dict(),
        }


__all__ = [
    "LocalizedLabel",
    "Label",
    "OptionMetadata",
    "OptionSetMetadata",
    "CascadeConfiguration",
    "LookupAttributeMetadata",
    "OneToManyRelationshipMetadata",
]
