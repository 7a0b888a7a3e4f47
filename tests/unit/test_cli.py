# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

import argparse
import json
from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import ClientAuthenticationError

from dataverse_commands import cli
from dataverse_commands.commands import Command, CommandRegistry, build_registry, column_from_args, load_json
from dataverse_commands.core._auth import ClientSecretTokenCredential
from dataverse_commands.core.errors import (
    ConfigurationError,
    EnvironmentListError,
    HttpError,
    MetadataError,
    RequestFailed,
    RetryExhausted,
    ValidationError,
)
from dataverse_commands.data._paging import CancellationToken, FetchResult
from dataverse_commands.environments import Environment
from dataverse_commands.models.columns import ChoiceColumn, LookupColumn, PolymorphicLookupColumn, TextColumn

URL = "https://example.crm.dynamics.com"
AUTH = ["--url", URL, "--tenant-id", "t", "--client-id", "c", "--client-secret", "s"]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("DATAVERSE_URL", "AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET", "DATAVERSE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def client():
    """Patch DataverseClient in the CLI module and return the instance handlers receive."""
    with patch.object(cli, "DataverseClient") as client_cls:
        instance = MagicMock()
        client_cls.return_value.__enter__.return_value = instance
        instance.client_cls = client_cls
        yield instance


class TestRegistry:
    def test_every_command_is_registered(self):
        registry = build_registry()
        assert registry.names() == [
            "get-token",
            "invoke-request",
            "get-records",
            "get-record",
            "create-record",
            "update-record",
            "delete-record",
            "create-table",
            "delete-table",
            "get-table",
            "list-tables",
            "create-column",
            "delete-column",
            "create-optionset",
            "delete-optionset",
            "get-metadata",
            "list-environments",
        ]
        assert len(registry) == 17
        assert "get-records" in registry
        assert registry.get("list-environments").needs_client is False
        assert registry.get("get-records").needs_client is True

    def test_duplicate_registration(self):
        registry = CommandRegistry()
        command = Command("ping", lambda a, c: "pong", lambda p: None)
        registry.register(command)
        with pytest.raises(ValueError):
            registry.register(command)

    def test_unknown_command(self):
        with pytest.raises(ValueError) as exc:
            CommandRegistry().get("nope")
        assert "Unknown command 'nope'" in str(exc.value)

    def test_parser_has_one_subcommand_per_command(self):
        registry = build_registry()
        parser = cli.build_parser(registry)
        args = parser.parse_args(["get-records", "--table", "account", "--page-size", "10"])
        assert args.command == "get-records"
        assert args.page_size == 10


class TestGetRecords:
    def test_prints_records(self, client, capsys):
        client.query.fetch_all.return_value = FetchResult(records=[{"name": "A"}, {"name": "B"}], page_count=2)

        code = cli.main(AUTH + ["get-records", "--table", "account", "--select", "name, revenue", "--max-retries", "5"])

        assert code == 0
        out = json.loads(capsys.readouterr().out)
        assert out == {"page_count": 2, "count": 2, "records": [{"name": "A"}, {"name": "B"}]}
        table = client.query.fetch_all.call_args.args[0]
        kwargs = client.query.fetch_all.call_args.kwargs
        assert table == "account"
        assert kwargs["select"] == ["name", "revenue"]
        assert kwargs["max_retries"] == 5
        assert kwargs["cancel"] is None

    def test_client_gets_secret_credential(self, client):
        client.query.fetch_all.return_value = FetchResult(records=[], page_count=1)
        cli.main(AUTH + ["get-records", "--table", "account"])
        base_url, credential, config = client.client_cls.call_args.args
        assert base_url == URL
        assert isinstance(credential, ClientSecretTokenCredential)

    def test_collection_with_timeout(self, client):
        client.query.fetch_collection.return_value = FetchResult(records=[], page_count=1)
        cli.main(AUTH + ["get-records", "--collection", "EntityDefinitions", "--timeout", "30"])
        assert client.query.fetch_collection.call_args.args[0] == "EntityDefinitions"
        assert isinstance(client.query.fetch_collection.call_args.kwargs["cancel"], CancellationToken)

    def test_retry_exhausted_exit_code(self, client, capsys):
        client.query.fetch_all.side_effect = RetryExhausted(
            "GET https://x/accounts still failing with HTTP 429 after 4 attempt(s)", attempts=4, status_code=429
        )
        code = cli.main(AUTH + ["get-records", "--table", "account"])
        assert code == 1
        err = capsys.readouterr().err
        assert "attempts: 4" in err
        assert "last status: 429" in err

    def test_request_failed_exit_code(self, client, capsys):
        client.query.fetch_all.side_effect = RequestFailed(
            "GET https://x/accounts failed with HTTP 403", status_code=403, server_message="no privilege"
        )
        assert cli.main(AUTH + ["get-records", "--table", "account"]) == 1
        err = capsys.readouterr().err
        assert "status: 403" in err
        assert "server message: no privilege" in err

    def test_url_is_required(self):
        with pytest.raises(SystemExit) as exc:
            cli.main(["get-records", "--table", "account"])
        assert exc.value.code == 2

    def test_url_from_environment(self, client, monkeypatch):
        monkeypatch.setenv("DATAVERSE_URL", URL)
        client.query.fetch_all.return_value = FetchResult(records=[], page_count=1)
        with patch.object(cli, "DefaultAzureCredential"):
            assert cli.main(["get-records", "--table", "account"]) == 0
        assert client.client_cls.call_args.args[0] == URL


class TestOtherCommands:
    def test_get_token(self, client, capsys):
        client.get_token.return_value = "abc"
        assert cli.main(AUTH + ["get-token"]) == 0
        assert json.loads(capsys.readouterr().out) == {"access_token": "abc"}

    def test_authentication_failure(self, client, capsys):
        client.get_token.side_effect = ClientAuthenticationError(message="AADSTS7000215")
        assert cli.main(AUTH + ["get-token"]) == 1
        assert "AADSTS7000215" in capsys.readouterr().err

    def test_invoke_request(self, client):
        client.invoke_request.return_value = MagicMock(value={"UserId": "u"})
        cli.main(AUTH + ["invoke-request", "--path", "WhoAmI", "--param", "a=b", "--header", "Prefer: x", "--body", '{"k": 1}'])
        args = client.invoke_request.call_args
        assert args.args == ("GET", "WhoAmI")
        assert args.kwargs == {"params": {"a": "b"}, "body": {"k": 1}, "headers": {"Prefer": "x"}}

    def test_update_many(self, client, capsys):
        cli.main(AUTH + ["update-record", "--table", "account", "--id", "a", "b", "--data", '{"statecode": 1}'])
        client.records.update.assert_called_once_with("account", ["a", "b"], {"statecode": 1})
        assert json.loads(capsys.readouterr().out) == {"updated": ["a", "b"]}

    def test_delete_single(self, client):
        cli.main(AUTH + ["delete-record", "--table", "account", "--id", "a"])
        client.records.delete.assert_called_once_with("account", "a")

    def test_create_table_requires_object(self, client, capsys):
        assert cli.main(AUTH + ["create-table", "--table", "new_X", "--columns", '["new_A"]']) == 1
        assert "validation_error" in capsys.readouterr().err

    def test_get_table_missing(self, client, capsys):
        client.tables.get.return_value = None
        assert cli.main(AUTH + ["get-table", "--table", "new_missing"]) == 1
        assert "metadata_error" in capsys.readouterr().err

    def test_create_optionset(self, client):
        client.metadata.create_option_set.return_value = {"name": "new_p", "metadata_id": "m"}
        cli.main(AUTH + ["create-optionset", "--name", "new_p", "--options", '{"1": "Low", "2": "High"}'])
        args = client.metadata.create_option_set.call_args
        assert args.args == ("new_p", {1: "Low", 2: "High"})

    def test_get_metadata_columns(self, client):
        client.metadata.get_columns.return_value = []
        cli.main(AUTH + ["get-metadata", "--table", "account", "--columns", "--select", "LogicalName"])
        client.metadata.get_columns.assert_called_once_with("account", select=["LogicalName"])

    def test_http_error_from_single_request(self, client, capsys):
        client.tables.list.side_effect = HttpError("HTTP 401: Unauthorized", status_code=401)
        assert cli.main(AUTH + ["list-tables"]) == 1
        assert "Error [http_error] (status 401)" in capsys.readouterr().err


class TestListEnvironmentsCommand:
    def test_no_client_needed(self, capsys):
        envs = [Environment("Dev", "e1", "https://dev.crm.dynamics.com/", active=True)]
        with patch("dataverse_commands.commands.list_environments", return_value=envs) as mock_list, patch.object(
            cli, "DataverseClient"
        ) as client_cls:
            assert cli.main(["list-environments", "--cli", "pac.exe"]) == 0
        mock_list.assert_called_once_with(cli="pac.exe")
        client_cls.assert_not_called()
        assert json.loads(capsys.readouterr().out)[0]["active"] is True

    def test_cli_failure(self, capsys):
        error = EnvironmentListError("'pac' was not found", subcode="env_cli_not_found")
        with patch("dataverse_commands.commands.list_environments", side_effect=error):
            assert cli.main(["list-environments"]) == 1
        assert "'pac' was not found" in capsys.readouterr().err


class TestBuildCredential:
    def namespace(self, **kwargs):
        values = dict(tenant_id=None, client_id=None, client_secret=None, interactive=False)
        values.update(kwargs)
        return argparse.Namespace(**values)

    def test_secret_requires_ids(self):
        with pytest.raises(ConfigurationError):
            cli.build_credential(self.namespace(client_secret="s"))

    def test_interactive(self):
        with patch.object(cli, "InteractiveBrowserCredential") as browser:
            cli.build_credential(self.namespace(interactive=True, tenant_id="t"))
        browser.assert_called_once_with(tenant_id="t")

    def test_default_chain(self):
        with patch.object(cli, "DefaultAzureCredential") as default:
            cli.build_credential(self.namespace())
        default.assert_called_once_with()


class TestColumnFromArgs:
    def namespace(self, **kwargs):
        values = dict(name="new_X", type="string", display_name=None, required=False, options=None, option_set=None, target=None)
        values.update(kwargs)
        return argparse.Namespace(**values)

    def test_plain(self):
        column = column_from_args(self.namespace(required=True, display_name="X"))
        assert isinstance(column, TextColumn)
        assert column.required_level == "ApplicationRequired"
        assert column.display_name == "X"

    def test_choice_options(self):
        column = column_from_args(self.namespace(type="choice", options='{"2": "High", "1": "Low"}'))
        assert isinstance(column, ChoiceColumn)
        assert column.options == {2: "High", 1: "Low"}

    def test_choice_needs_options(self):
        with pytest.raises(ValidationError):
            column_from_args(self.namespace(type="choice"))

    def test_lookup(self):
        column = column_from_args(self.namespace(type="lookup", target=["account"]))
        assert isinstance(column, LookupColumn)
        assert column.target_table == "account"
        with pytest.raises(ValidationError):
            column_from_args(self.namespace(type="lookup", target=["account", "contact"]))

    def test_polymorphic(self):
        column = column_from_args(self.namespace(type="polymorphic-lookup", target=["account", "contact"]))
        assert isinstance(column, PolymorphicLookupColumn)
        with pytest.raises(ValidationError):
            column_from_args(self.namespace(type="polymorphic-lookup", target=["account"]))


class TestLoadJson:
    def test_inline_and_file(self, tmp_path):
        path = tmp_path / "data.json"
        path.write_text('[{"name": "A"}]', encoding="utf-8")
        assert load_json('{"a": 1}') == {"a": 1}
        assert load_json(f"@{path}") == [{"name": "A"}]
        assert load_json(None) is None

    def test_invalid(self):
        with pytest.raises(ValidationError):
            load_json("{nope")


def test_format_error_generic():
    error = MetadataError("Table 'x' not found.", subcode="metadata_table_not_found")
    assert cli.format_error(error) == "Error [metadata_error]: Table 'x' not found."
