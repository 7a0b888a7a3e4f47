# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import unittest
from enum import IntEnum
from unittest.mock import MagicMock

from azure.core.credentials import TokenCredential

from dataverse_commands.client import DataverseClient
from dataverse_commands.core.config import DataverseConfig
from dataverse_commands.core.errors import ValidationError
from dataverse_commands.models.columns import (
    ChoiceColumn,
    IntegerColumn,
    LookupColumn,
    PolymorphicLookupColumn,
)
from dataverse_commands.operations.tables import TableOperations


class Priority(IntEnum):
    LOW = 1
    HIGH = 2


class TestTableOperations(unittest.TestCase):
    """Unit tests for the client.tables namespace (TableOperations)."""

    def setUp(self):
        self.mock_credential = MagicMock(spec=TokenCredential)
        self.client = DataverseClient("https://example.crm.dynamics.com", self.mock_credential, DataverseConfig())
        self.client._odata = MagicMock()
        self.od = self.client._odata
        self.od.config = DataverseConfig(language_code=1033)
        self.od._create_entity.return_value = {
            "MetadataId": "meta-1",
            "LogicalName": "new_product",
            "SchemaName": "new_Product",
            "EntitySetName": "new_products",
        }
        self.od._primary_id_attr.side_effect = lambda t: f"{t.lower()}id"

    def test_namespace_exists(self):
        self.assertIsInstance(self.client.tables, TableOperations)

    # ------------------------------------------------------------------ create

    def test_create_with_shorthand_columns(self):
        result = self.client.tables.create("new_Product", {"new_Price": "money", "InStock": "bool"}, solution="Sol")

        payload, solution = self.od._create_entity.call_args.args
        self.assertEqual(solution, "Sol")
        self.assertEqual(payload["SchemaName"], "new_Product")
        self.assertEqual(payload["@odata.type"], "Microsoft.Dynamics.CRM.EntityMetadata")
        attrs = payload["Attributes"]
        self.assertEqual([a["SchemaName"] for a in attrs], ["new_Name", "new_Price", "new_InStock"])
        self.assertTrue(attrs[0]["IsPrimaryName"])
        self.assertTrue(attrs[1]["@odata.type"].endswith("MoneyAttributeMetadata"))
        self.assertEqual(result["entity_set_name"], "new_products")
        self.assertEqual(result["columns_created"], ["new_Price", "new_InStock"])
        self.assertEqual(result["lookups_created"], [])
        self.assertEqual(result["primary_name_attribute"], "new_Name")

    def test_create_friendly_name_gets_prefix(self):
        self.client.tables.create("sales order")
        payload = self.od._create_entity.call_args.args[0]
        self.assertEqual(payload["SchemaName"], "new_SalesOrder")
        self.assertEqual(payload["DisplayName"]["LocalizedLabels"][0]["Label"], "sales order")

    def test_create_with_lookup_after_table(self):
        self.od._create_lookup.return_value = {"relationship_id": "rel-1"}
        columns = [IntegerColumn("new_Stock"), LookupColumn("new_SupplierId", target_table="account")]

        result = self.client.tables.create("new_Product", columns, primary_column="new_Title")

        attrs = self.od._create_entity.call_args.args[0]["Attributes"]
        self.assertEqual([a["SchemaName"] for a in attrs], ["new_Title", "new_Stock"])
        rel_payload, solution = self.od._create_lookup.call_args.args
        self.assertEqual(rel_payload["ReferencingEntity"], "new_product")
        self.assertEqual(rel_payload["ReferencedEntity"], "account")
        self.assertEqual(rel_payload["ReferencedAttribute"], "accountid")
        self.assertIsNone(solution)
        self.assertEqual(result["lookups_created"], [{"relationship_id": "rel-1"}])

    def test_create_with_enum_column(self):
        self.client.tables.create("new_Ticket", {"new_Priority": Priority})
        attrs = self.od._create_entity.call_args.args[0]["Attributes"]
        options = attrs[1]["OptionSet"]["Options"]
        self.assertEqual([o["Value"] for o in options], [1, 2])

    def test_create_unsupported_column(self):
        with self.assertRaises(ValidationError):
            self.client.tables.create("new_Product", {"new_Blob": "image"})
        self.od._create_entity.assert_not_called()

    # ------------------------------------------------------------- get / list

    def test_get_returns_none_when_missing(self):
        self.od._get_entity.return_value = None
        self.assertIsNone(self.client.tables.get("new_missing"))

    def test_get_maps_fields(self):
        self.od._get_entity.return_value = {
            "SchemaName": "Account",
            "LogicalName": "account",
            "EntitySetName": "accounts",
            "MetadataId": "m",
            "PrimaryIdAttribute": "accountid",
            "PrimaryNameAttribute": "name",
        }
        info = self.client.tables.get("account")
        self.assertEqual(info["entity_set_name"], "accounts")
        self.assertEqual(info["primary_name_attribute"], "name")

    def test_list(self):
        self.od._list_tables.return_value = [{"LogicalName": "account"}]
        self.assertEqual(self.client.tables.list(), [{"LogicalName": "account"}])

    def test_delete(self):
        self.client.tables.delete("new_Product")
        self.od._delete_table.assert_called_once_with("new_Product")

    # ---------------------------------------------------------------- columns

    def test_add_columns(self):
        created = self.client.tables.add_columns("new_Product", {"Color": "string", "new_Weight": "decimal"})
        self.assertEqual(created, ["new_Color", "new_Weight"])
        tables = [c.args[0] for c in self.od._create_attribute.call_args_list]
        self.assertEqual(tables, ["new_Product", "new_Product"])

    def test_add_columns_requires_one(self):
        with self.assertRaises(ValidationError):
            self.client.tables.add_columns("new_Product", {})

    def test_create_column_plain(self):
        self.od._create_attribute.return_value = "attr-1"
        result = self.client.tables.create_column("new_Product", ("new_Notes", "memo"), solution="Sol")
        self.assertEqual(result, {"schema_name": "new_Notes", "kind": "memo", "metadata_id": "attr-1"})
        _, payload, solution = self.od._create_attribute.call_args.args
        self.assertTrue(payload["@odata.type"].endswith("MemoAttributeMetadata"))
        self.assertEqual(solution, "Sol")

    def test_create_column_global_choice(self):
        self.client.tables.create_column("new_Ticket", ChoiceColumn("new_Region", global_option_set="new_region"))
        payload = self.od._create_attribute.call_args.args[1]
        self.assertEqual(payload["GlobalOptionSet@odata.bind"], "/GlobalOptionSetDefinitions(Name='new_region')")

    def test_create_column_polymorphic_lookup(self):
        self.od._require_entity.return_value = {"LogicalName": "new_note", "MetadataId": "m"}
        self.od._create_polymorphic_lookup.return_value = {"attribute_id": "a", "relationship_ids": ["r1", "r2"]}
        column = PolymorphicLookupColumn("new_RegardingId", target_tables=["account", "contact"])

        result = self.client.tables.create_column("new_Note", column)

        payload = self.od._create_polymorphic_lookup.call_args.args[0]
        self.assertEqual([r["ReferencingEntity"] for r in payload["OneToManyRelationships"]], ["new_note", "new_note"])
        self.assertEqual(payload["Lookup"]["Targets"], ["account", "contact"])
        self.assertEqual(result["kind"], "polymorphic_lookup")
        self.assertEqual(result["relationship_ids"], ["r1", "r2"])

    def test_remove_columns(self):
        removed = self.client.tables.remove_columns("new_Product", "new_Color")
        self.assertEqual(removed, ["new_Color"])
        self.od._delete_attribute.assert_called_once_with("new_Product", "new_Color")

    def test_remove_columns_requires_one(self):
        with self.assertRaises(ValidationError):
            self.client.tables.remove_columns("new_Product", [])

    # ---------------------------------------------------------- system tables

    def test_add_columns_to_system_table_keeps_table_name(self):
        created = self.client.tables.add_columns("contact", {"new_Score": "int", "Tier": "string"})
        self.assertEqual(created, ["new_Score", "new_Tier"])
        tables = [c.args[0] for c in self.od._create_attribute.call_args_list]
        self.assertEqual(tables, ["contact", "contact"])

    def test_create_column_on_system_table(self):
        self.client.tables.create_column("account", ("new_Rating", "int"))
        self.assertEqual(self.od._create_attribute.call_args.args[0], "account")

    def test_create_lookup_column_on_system_table(self):
        self.od._require_entity.return_value = {"LogicalName": "contact", "MetadataId": "m"}
        self.client.tables.create_column("contact", LookupColumn("new_ProductId", target_table="new_product"))
        self.od._require_entity.assert_called_once_with("contact")
        rel_payload = self.od._create_lookup.call_args.args[0]
        self.assertEqual(rel_payload["ReferencingEntity"], "contact")

    def test_remove_columns_from_system_table(self):
        self.client.tables.remove_columns("account", ["new_rating"])
        self.od._delete_attribute.assert_called_once_with("account", "new_rating")

    def test_delete_passes_name_through(self):
        self.client.tables.delete("product")
        self.od._delete_table.assert_called_once_with("product")


if __name__ == "__main__":
    unittest.main()
