# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import unittest
from unittest.mock import MagicMock

from azure.core.credentials import TokenCredential

from dataverse_commands.client import DataverseClient
from dataverse_commands.core import _error_codes as ec
from dataverse_commands.core.config import DataverseConfig
from dataverse_commands.core.errors import MetadataError, ValidationError
from dataverse_commands.operations.metadata import MetadataOperations


class TestMetadataOperations(unittest.TestCase):
    """Unit tests for the client.metadata namespace (MetadataOperations)."""

    def setUp(self):
        self.client = DataverseClient(
            "https://example.crm.dynamics.com", MagicMock(spec=TokenCredential), DataverseConfig()
        )
        self.client._odata = MagicMock()
        self.od = self.client._odata
        self.od.config = DataverseConfig(language_code=1033)

    def test_namespace_exists(self):
        self.assertIsInstance(self.client.metadata, MetadataOperations)

    def test_get_table(self):
        self.od._get_table_metadata.return_value = {"LogicalName": "account"}
        result = self.client.metadata.get_table("account", select=["LogicalName"])
        self.od._get_table_metadata.assert_called_once_with("account", select=["LogicalName"])
        self.assertEqual(result, {"LogicalName": "account"})

    def test_get_columns(self):
        self.od._get_attributes.return_value = [{"LogicalName": "name"}]
        self.assertEqual(self.client.metadata.get_columns("account"), [{"LogicalName": "name"}])

    def test_get_column_missing(self):
        self.od._get_attribute.return_value = None
        with self.assertRaises(MetadataError) as ctx:
            self.client.metadata.get_column("account", "new_nope")
        self.assertEqual(ctx.exception.subcode, ec.METADATA_COLUMN_NOT_FOUND)

    def test_create_option_set(self):
        self.od._create_global_option_set.return_value = "os-1"

        result = self.client.metadata.create_option_set(
            "new_priority", {2: "High", 1: {1033: "Low", 1036: "Basse"}}, solution="Sol"
        )

        self.assertEqual(result, {"name": "new_priority", "metadata_id": "os-1"})
        payload, solution = self.od._create_global_option_set.call_args.args
        self.assertEqual(solution, "Sol")
        self.assertTrue(payload["IsGlobal"])
        self.assertEqual(payload["Name"], "new_priority")
        self.assertEqual(payload["DisplayName"]["LocalizedLabels"][0]["Label"], "priority")
        self.assertEqual([o["Value"] for o in payload["Options"]], [1, 2])
        low_labels = payload["Options"][0]["Label"]["LocalizedLabels"]
        self.assertEqual([l["LanguageCode"] for l in low_labels], [1033, 1036])

    def test_create_option_set_requires_options(self):
        with self.assertRaises(ValidationError):
            self.client.metadata.create_option_set("new_priority", {})
        self.od._create_global_option_set.assert_not_called()

    def test_get_and_list_option_sets(self):
        self.od._get_global_option_set.return_value = None
        self.od._list_global_option_sets.return_value = [{"Name": "new_priority"}]
        self.assertIsNone(self.client.metadata.get_option_set("new_other"))
        self.assertEqual(self.client.metadata.list_option_sets(), [{"Name": "new_priority"}])

    def test_delete_option_set(self):
        self.client.metadata.delete_option_set("new_priority")
        self.od._delete_global_option_set.assert_called_once_with("new_priority")


if __name__ == "__main__":
    unittest.main()
