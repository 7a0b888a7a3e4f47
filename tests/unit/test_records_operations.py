# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import unittest
from unittest.mock import MagicMock

from azure.core.credentials import TokenCredential

from dataverse_commands.client import DataverseClient
from dataverse_commands.core.config import DataverseConfig
from dataverse_commands.core.results import OperationResult, RequestMetadata
from dataverse_commands.operations.records import RecordOperations


class TestRecordOperations(unittest.TestCase):
    """Unit tests for the client.records namespace (RecordOperations)."""

    def setUp(self):
        self.mock_credential = MagicMock(spec=TokenCredential)
        self.client = DataverseClient("https://example.crm.dynamics.com", self.mock_credential, DataverseConfig())
        self.client._odata = MagicMock()
        self.metadata = RequestMetadata(client_request_id="req-1", http_status_code=204)
        self.client._odata._last_metadata.return_value = self.metadata

    def test_namespace_exists(self):
        self.assertIsInstance(self.client.records, RecordOperations)

    def test_create_single(self):
        self.client._odata._create.return_value = ["guid-123"]

        result = self.client.records.create("account", {"name": "Contoso Ltd"})

        self.client._odata._create.assert_called_once_with("account", {"name": "Contoso Ltd"})
        self.assertIsInstance(result, OperationResult)
        self.assertEqual(result[0], "guid-123")
        self.assertIs(result.metadata, self.metadata)

    def test_create_bulk(self):
        payloads = [{"name": "Company A"}, {"name": "Company B"}]
        self.client._odata._create.return_value = ["guid-1", "guid-2"]

        result = self.client.records.create("account", payloads)

        self.client._odata._create.assert_called_once_with("account", payloads)
        self.assertEqual(result, ["guid-1", "guid-2"])

    def test_create_rejects_other_types(self):
        with self.assertRaises(TypeError):
            self.client.records.create("account", "name=Contoso")
        self.client._odata._create.assert_not_called()

    def test_get_with_select(self):
        self.client._odata._get.return_value = {"accountid": "guid-1", "name": "Contoso"}

        result = self.client.records.get("account", "guid-1", select=["name"])

        self.client._odata._get.assert_called_once_with("account", "guid-1", select=["name"])
        self.assertEqual(result["name"], "Contoso")

    def test_update_single(self):
        self.client.records.update("account", "guid-1", {"telephone1": "555-0100"})
        self.client._odata._update.assert_called_once_with("account", "guid-1", {"telephone1": "555-0100"})
        self.client._odata._update_by_ids.assert_not_called()

    def test_update_single_requires_dict(self):
        with self.assertRaises(TypeError):
            self.client.records.update("account", "guid-1", [{"name": "x"}])

    def test_update_broadcast(self):
        self.client.records.update("account", ["a", "b"], {"statecode": 1})
        self.client._odata._update_by_ids.assert_called_once_with("account", ["a", "b"], {"statecode": 1})

    def test_update_rejects_other_id_types(self):
        with self.assertRaises(TypeError):
            self.client.records.update("account", 42, {"name": "x"})

    def test_delete_many(self):
        result = self.client.records.delete("account", ["a", "b"])
        self.assertEqual([c.args for c in self.client._odata._delete.call_args_list], [("account", "a"), ("account", "b")])
        self.assertIsNone(result.value)

    def test_delete_rejects_other_types(self):
        with self.assertRaises(TypeError):
            self.client.records.delete("account", None)


if __name__ == "__main__":
    unittest.main()
