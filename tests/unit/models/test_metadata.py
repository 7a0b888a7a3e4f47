# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Tests for metadata entity types."""

import pytest

from dataverse_commands.core import _error_codes as ec
from dataverse_commands.core.errors import ValidationError
from dataverse_commands.models.metadata import (
    CascadeConfiguration,
    Label,
    LocalizedLabel,
    LookupAttributeMetadata,
    OneToManyRelationshipMetadata,
    OptionMetadata,
    OptionSetMetadata,
)


class TestLabel:
    def test_single_language(self):
        result = Label.of("Account", 1033).to_dict()
        assert result["@odata.type"] == "Microsoft.Dynamics.CRM.Label"
        assert result["LocalizedLabels"] == [
            {"@odata.type": "Microsoft.Dynamics.CRM.LocalizedLabel", "Label": "Account", "LanguageCode": 1033}
        ]
        assert result["UserLocalizedLabel"]["Label"] == "Account"

    def test_translations_keep_order(self):
        label = Label.from_translations({1033: "Status", 1036: "Statut"})
        assert [ll.language_code for ll in label.localized_labels] == [1033, 1036]

    @pytest.mark.parametrize("translations", [{}, {"1033": "x"}, {1033: ""}, {1033: None}])
    def test_invalid_translations(self, translations):
        with pytest.raises(ValidationError):
            Label.from_translations(translations)

    def test_empty_label_has_no_user_label(self):
        assert "UserLocalizedLabel" not in Label([]).to_dict()


class TestOptionSetMetadata:
    def options(self):
        return [OptionMetadata(1, Label.of("North", 1033)), OptionMetadata(2, Label.of("South", 1033))]

    def test_local(self):
        result = OptionSetMetadata(self.options()).to_dict()
        assert result["IsGlobal"] is False
        assert result["OptionSetType"] == "Picklist"
        assert [o["Value"] for o in result["Options"]] == [1, 2]
        assert "Name" not in result

    def test_global(self):
        result = OptionSetMetadata(
            self.options(), is_global=True, name="new_region", display_name=Label.of("Region", 1033)
        ).to_dict()
        assert result["IsGlobal"] is True
        assert result["Name"] == "new_region"
        assert result["DisplayName"]["LocalizedLabels"][0]["Label"] == "Region"

    def test_global_needs_name(self):
        with pytest.raises(ValidationError):
            OptionSetMetadata(self.options(), is_global=True).to_dict()

    def test_empty(self):
        with pytest.raises(ValidationError) as exc:
            OptionSetMetadata([]).to_dict()
        assert exc.value.subcode == ec.VALIDATION_EMPTY_OPTIONS

    def test_duplicate_values(self):
        dup = [OptionMetadata(1, Label.of("A", 1033)), OptionMetadata(1, Label.of("B", 1033))]
        with pytest.raises(ValidationError):
            OptionSetMetadata(dup).to_dict()


class TestRelationshipMetadata:
    def test_cascade_defaults(self):
        assert CascadeConfiguration().to_dict() == {
            "Assign": "NoCascade",
            "Delete": "RemoveLink",
            "Merge": "NoCascade",
            "Reparent": "NoCascade",
            "Share": "NoCascade",
            "Unshare": "NoCascade",
        }

    def test_lookup_attribute(self):
        result = LookupAttributeMetadata(
            schema_name="new_AccountId",
            display_name=Label.of("Account", 1033),
            description=Label.of("Parent account", 1033),
            targets=["account", "contact"],
        ).to_dict()
        assert result["AttributeTypeName"] == {"Value": "LookupType"}
        assert result["RequiredLevel"]["Value"] == "None"
        assert result["Description"]["LocalizedLabels"][0]["Label"] == "Parent account"
        assert result["Targets"] == ["account", "contact"]

    def test_one_to_many(self):
        result = OneToManyRelationshipMetadata(
            schema_name="new_account_orders",
            referenced_entity="account",
            referencing_entity="new_order",
            referenced_attribute="accountid",
        ).to_dict()
        assert result["ReferencedEntity"] == "account"
        assert result["ReferencingEntity"] == "new_order"
        assert result["CascadeConfiguration"]["Delete"] == "RemoveLink"


def test_localized_label_dict():
    assert LocalizedLabel("Bonjour", 1036).to_dict()["LanguageCode"] == 1036
