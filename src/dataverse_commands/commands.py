# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Command registry for the ``dataverse`` CLI.

Every command is registered explicitly in :func:`build_registry`. A
:class:`Command` pairs a name with an argparse ``configure`` callback and a
``handler(args, client)`` that returns JSON-serializable data.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, TYPE_CHECKING

from .core import _error_codes as ec
from .core.errors import MetadataError, ValidationError
from .data._paging import CancellationToken
from .environments import list_environments
from .models.columns import ChoiceColumn, LookupColumn, PolymorphicLookupColumn, column_from_spec

if TYPE_CHECKING:
    from .client import DataverseClient

Handler = Callable[[argparse.Namespace, Optional["DataverseClient"]], Any]
Configure = Callable[[argparse.ArgumentParser], None]


@dataclass(frozen=True)
class Command:
    """
    One CLI command.

    :param name: Sub-command name, e.g. ``"get-records"``.
    :param handler: Called with the parsed arguments and a client (``None`` when
        ``needs_client`` is False). Returns the data printed as JSON.
    :param configure: Adds the command's arguments to its sub-parser.
    :param help: One-line help text.
    :param needs_client: Whether the command talks to a Dataverse environment.
    """

    name: str
    handler: Handler
    configure: Configure
    help: str = ""
    needs_client: bool = True


class CommandRegistry:
    """Name -> :class:`Command` mapping, in registration order."""

    def __init__(self) -> None:
        self._commands: Dict[str, Command] = {}

    def register(self, command: Command) -> Command:
        if command.name in self._commands:
            raise ValueError(f"Command '{command.name}' is already registered")
        self._commands[command.name] = command
        return command

    def get(self, name: str) -> Command:
        try:
            return self._commands[name]
        except KeyError:
            raise ValueError(f"Unknown command '{name}'. Available: {', '.join(self.names())}") from None

    def names(self) -> List[str]:
        return list(self._commands)

    def __iter__(self) -> Iterator[Command]:
        return iter(self._commands.values())

    def __contains__(self, name: object) -> bool:
        return name in self._commands

    def __len__(self) -> int:
        return len(self._commands)


# ---------------------------------------------------------------- argument helpers


def load_json(value: Optional[str]) -> Any:
    """Parse a JSON argument. ``@path`` reads the JSON from a file."""
    if value is None:
        return None
    text = Path(value[1:]).read_text(encoding="utf-8") if value.startswith("@") else value
    try:
        return json.loads(text)
    except ValueError as e:
        raise ValidationError(f"Invalid JSON argument: {e}") from e


def _split_csv(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


def _pairs(values: Optional[List[str]], sep: str) -> Dict[str, str]:
    result: Dict[str, str] = {}
    for item in values or []:
        if sep not in item:
            raise ValidationError(f"Expected KEY{sep}VALUE, got '{item}'")
        key, val = item.split(sep, 1)
        result[key.strip()] = val.strip()
    return result


def _options(value: Optional[str]) -> Optional[Dict[int, Any]]:
    """Parse ``{"1": "Low", "2": "High"}`` into ``{1: "Low", 2: "High"}``."""
    data = load_json(value)
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValidationError("Options must be a JSON object mapping values to labels")
    try:
        return {int(k): v for k, v in data.items()}
    except ValueError as e:
        raise ValidationError(f"Option values must be integers: {e}") from e


def _add_table(p: argparse.ArgumentParser) -> None:
    p.add_argument("--table", required=True, help="Table logical or schema name (e.g. account, new_Product)")


def _add_solution(p: argparse.ArgumentParser) -> None:
    p.add_argument("--solution", help="Unique name of the solution that receives the change")


# ---------------------------------------------------------------- handlers


def _configure_get_token(p: argparse.ArgumentParser) -> None:
    pass


def _get_token(args: argparse.Namespace, client: "DataverseClient") -> Any:
    return {"access_token": client.get_token()}


def _configure_invoke_request(p: argparse.ArgumentParser) -> None:
    p.add_argument("--method", default="GET", help="HTTP method (default: GET)")
    p.add_argument("--path", required=True, help="Path under /api/data/v9.2, e.g. WhoAmI, or an absolute URL")
    p.add_argument("--param", action="append", metavar="KEY=VALUE", help="Query parameter (repeatable)")
    p.add_argument("--header", action="append", metavar="NAME:VALUE", help="Extra header (repeatable)")
    p.add_argument("--body", help="JSON body, or @file.json")


def _invoke_request(args: argparse.Namespace, client: "DataverseClient") -> Any:
    return client.invoke_request(
        args.method,
        args.path,
        params=_pairs(args.param, "=") or None,
        body=load_json(args.body),
        headers=_pairs(args.header, ":") or None,
    ).value


def _configure_get_records(p: argparse.ArgumentParser) -> None:
    target = p.add_mutually_exclusive_group(required=True)
    target.add_argument("--table", help="Table logical or schema name")
    target.add_argument("--collection", help="Raw collection path, e.g. EntityDefinitions")
    p.add_argument("--select", help="Comma-separated columns")
    p.add_argument("--filter", help="OData $filter expression")
    p.add_argument("--orderby", help="Comma-separated $orderby expressions")
    p.add_argument("--expand", help="Comma-separated navigation properties")
    p.add_argument("--top", type=int, help="Maximum records across all pages")
    p.add_argument("--page-size", type=int, help="Page-size hint, 1..5000")
    p.add_argument("--max-retries", type=int, help="Per-page retry budget for 429/5xx responses")
    p.add_argument("--timeout", type=float, help="Stop the fetch after this many seconds")


def _get_records(args: argparse.Namespace, client: "DataverseClient") -> Any:
    options = dict(
        select=_split_csv(args.select),
        filter=args.filter,
        orderby=_split_csv(args.orderby),
        expand=_split_csv(args.expand),
        top=args.top,
        page_size=args.page_size,
        max_retries=args.max_retries,
        cancel=CancellationToken(args.timeout) if args.timeout else None,
    )
    if args.collection:
        result = client.query.fetch_collection(args.collection, **options)
    else:
        result = client.query.fetch_all(args.table, **options)
    return {"page_count": result.page_count, "count": len(result.records), "records": result.records}


def _configure_get_record(p: argparse.ArgumentParser) -> None:
    _add_table(p)
    p.add_argument("--id", required=True, help="Record GUID or alternate key (name='value')")
    p.add_argument("--select", help="Comma-separated columns")


def _get_record(args: argparse.Namespace, client: "DataverseClient") -> Any:
    return client.records.get(args.table, args.id, select=_split_csv(args.select)).value


def _configure_create_record(p: argparse.ArgumentParser) -> None:
    _add_table(p)
    p.add_argument("--data", required=True, help="JSON object or array of objects, or @file.json")


def _create_record(args: argparse.Namespace, client: "DataverseClient") -> Any:
    return {"ids": client.records.create(args.table, load_json(args.data)).value}


def _configure_update_record(p: argparse.ArgumentParser) -> None:
    _add_table(p)
    p.add_argument("--id", required=True, nargs="+", help="Record GUID(s)")
    p.add_argument("--data", required=True, help="JSON object of changes, or a list paired with --id")


def _update_record(args: argparse.Namespace, client: "DataverseClient") -> Any:
    ids = args.id[0] if len(args.id) == 1 else list(args.id)
    client.records.update(args.table, ids, load_json(args.data))
    return {"updated": list(args.id)}


def _configure_delete_record(p: argparse.ArgumentParser) -> None:
    _add_table(p)
    p.add_argument("--id", required=True, nargs="+", help="Record GUID(s)")


def _delete_record(args: argparse.Namespace, client: "DataverseClient") -> Any:
    ids = args.id[0] if len(args.id) == 1 else list(args.id)
    client.records.delete(args.table, ids)
    return {"deleted": list(args.id)}


def _configure_create_table(p: argparse.ArgumentParser) -> None:
    _add_table(p)
    p.add_argument("--columns", help='JSON object {"new_Price": "money", ...}, or @file.json')
    p.add_argument("--primary-column", help="Schema name of the primary name column")
    p.add_argument("--display-name", help="Display label")
    _add_solution(p)


def _create_table(args: argparse.Namespace, client: "DataverseClient") -> Any:
    columns = load_json(args.columns) or {}
    if not isinstance(columns, dict):
        raise ValidationError("--columns must be a JSON object of schema names to types")
    return client.tables.create(
        args.table,
        columns,
        solution=args.solution,
        primary_column=args.primary_column,
        display_name=args.display_name,
    ).value


def _configure_delete_table(p: argparse.ArgumentParser) -> None:
    _add_table(p)


def _delete_table(args: argparse.Namespace, client: "DataverseClient") -> Any:
    client.tables.delete(args.table)
    return {"deleted": args.table}


def _configure_get_table(p: argparse.ArgumentParser) -> None:
    _add_table(p)


def _get_table(args: argparse.Namespace, client: "DataverseClient") -> Any:
    info = client.tables.get(args.table)
    if info is None:
        raise MetadataError(f"Table '{args.table}' not found.", subcode=ec.METADATA_TABLE_NOT_FOUND)
    return info


def _configure_list_tables(p: argparse.ArgumentParser) -> None:
    pass


def _list_tables(args: argparse.Namespace, client: "DataverseClient") -> Any:
    return client.tables.list()


COLUMN_TYPES = (
    "string", "memo", "int", "decimal", "money", "float", "datetime", "bool",
    "choice", "lookup", "polymorphic-lookup",
)


def _configure_create_column(p: argparse.ArgumentParser) -> None:
    _add_table(p)
    p.add_argument("--name", required=True, help="Column schema name with prefix, e.g. new_Rating")
    p.add_argument("--type", required=True, choices=COLUMN_TYPES, help="Column kind")
    p.add_argument("--display-name", help="Display label")
    p.add_argument("--required", action="store_true", help="Mark the column ApplicationRequired")
    p.add_argument("--options", help='Choice options as JSON {"1": "Low", "2": "High"}')
    p.add_argument("--option-set", help="Bind a choice column to this global option set")
    p.add_argument("--target", nargs="+", help="Lookup target table(s)")
    _add_solution(p)


def column_from_args(args: argparse.Namespace):
    """Build a column from ``create-column`` arguments."""
    common = dict(
        display_name=args.display_name,
        required_level="ApplicationRequired" if args.required else "None",
    )
    if args.type == "choice":
        if not args.options and not args.option_set:
            raise ValidationError("choice columns need --options or --option-set")
        return ChoiceColumn(args.name, options=_options(args.options), global_option_set=args.option_set, **common)
    if args.type == "lookup":
        if not args.target or len(args.target) != 1:
            raise ValidationError("lookup columns need exactly one --target")
        return LookupColumn(args.name, target_table=args.target[0], **common)
    if args.type == "polymorphic-lookup":
        if not args.target or len(args.target) < 2:
            raise ValidationError("polymorphic lookups need at least two --target tables")
        return PolymorphicLookupColumn(args.name, target_tables=list(args.target), **common)
    column = column_from_spec(args.name, args.type)
    column.display_name = args.display_name
    column.required_level = common["required_level"]
    return column


def _create_column(args: argparse.Namespace, client: "DataverseClient") -> Any:
    return client.tables.create_column(args.table, column_from_args(args), solution=args.solution)


def _configure_delete_column(p: argparse.ArgumentParser) -> None:
    _add_table(p)
    p.add_argument("--name", required=True, nargs="+", help="Column logical or schema name(s)")


def _delete_column(args: argparse.Namespace, client: "DataverseClient") -> Any:
    return {"deleted": client.tables.remove_columns(args.table, list(args.name))}


def _configure_create_optionset(p: argparse.ArgumentParser) -> None:
    p.add_argument("--name", required=True, help="Option set name with prefix, e.g. new_priority")
    p.add_argument("--options", required=True, help='JSON {"1": "Low", "2": "High"}, or @file.json')
    p.add_argument("--display-name", help="Display label")
    _add_solution(p)


def _create_optionset(args: argparse.Namespace, client: "DataverseClient") -> Any:
    return client.metadata.create_option_set(
        args.name, _options(args.options), display_name=args.display_name, solution=args.solution
    )


def _configure_delete_optionset(p: argparse.ArgumentParser) -> None:
    p.add_argument("--name", required=True, help="Global option set name")


def _delete_optionset(args: argparse.Namespace, client: "DataverseClient") -> Any:
    client.metadata.delete_option_set(args.name)
    return {"deleted": args.name}


def _configure_get_metadata(p: argparse.ArgumentParser) -> None:
    target = p.add_mutually_exclusive_group(required=True)
    target.add_argument("--table", help="Table logical name")
    target.add_argument("--option-set", help="Global option set name")
    target.add_argument("--option-sets", action="store_true", help="List global option sets")
    p.add_argument("--column", help="With --table: a single column")
    p.add_argument("--columns", action="store_true", help="With --table: all column definitions")
    p.add_argument("--select", help="Comma-separated metadata properties")


def _get_metadata(args: argparse.Namespace, client: "DataverseClient") -> Any:
    if args.option_sets:
        return client.metadata.list_option_sets()
    if args.option_set:
        found = client.metadata.get_option_set(args.option_set)
        if found is None:
            raise MetadataError(
                f"Global option set '{args.option_set}' not found.", subcode=ec.METADATA_OPTIONSET_NOT_FOUND
            )
        return found
    if args.column:
        return client.metadata.get_column(args.table, args.column)
    if args.columns:
        return client.metadata.get_columns(args.table, select=_split_csv(args.select))
    return client.metadata.get_table(args.table, select=_split_csv(args.select))


def _configure_list_environments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--cli", default="pac", help="Power Platform CLI executable (default: pac)")


def _list_environments(args: argparse.Namespace, client: None) -> Any:
    return [env.to_dict() for env in list_environments(cli=args.cli)]


def build_registry() -> CommandRegistry:
    """Register every CLI command."""
    registry = CommandRegistry()
    for command in (
        Command("get-token", _get_token, _configure_get_token, "Print a bearer token for the environment"),
        Command("invoke-request", _invoke_request, _configure_invoke_request, "Send a raw Web API request"),
        Command("get-records", _get_records, _configure_get_records, "Fetch every record of a table or collection"),
        Command("get-record", _get_record, _configure_get_record, "Get one record"),
        Command("create-record", _create_record, _configure_create_record, "Create one or more records"),
        Command("update-record", _update_record, _configure_update_record, "Update one or more records"),
        Command("delete-record", _delete_record, _configure_delete_record, "Delete one or more records"),
        Command("create-table", _create_table, _configure_create_table, "Create a custom table"),
        Command("delete-table", _delete_table, _configure_delete_table, "Delete a custom table"),
        Command("get-table", _get_table, _configure_get_table, "Show basic table metadata"),
        Command("list-tables", _list_tables, _configure_list_tables, "List non-private tables"),
        Command("create-column", _create_column, _configure_create_column, "Add a column to a table"),
        Command("delete-column", _delete_column, _configure_delete_column, "Remove columns from a table"),
        Command("create-optionset", _create_optionset, _configure_create_optionset, "Create a global option set"),
        Command("delete-optionset", _delete_optionset, _configure_delete_optionset, "Delete a global option set"),
        Command("get-metadata", _get_metadata, _configure_get_metadata, "Show table, column or option set metadata"),
        Command(
            "list-environments",
            _list_environments,
            _configure_list_environments,
            "List environments known to the Power Platform CLI",
            needs_client=False,
        ),
    ):
        registry.register(command)
    return registry


__all__ = ["Command", "CommandRegistry", "build_registry", "column_from_args", "load_json"]
