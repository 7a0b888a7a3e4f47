# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
``dataverse`` command-line entry point.

Example::

    dataverse --url https://org.crm.dynamics.com --interactive get-records --table account --select name
    dataverse --url https://org.crm.dynamics.com --tenant-id T --client-id C --client-secret S list-tables
    dataverse list-environments
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
import sys
from typing import Any, List, Optional

from azure.core.credentials import TokenCredential
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import DefaultAzureCredential, InteractiveBrowserCredential

from . import __version__
from .client import DataverseClient
from .commands import CommandRegistry, build_registry
from .core._auth import ClientSecretTokenCredential
from .core.config import DataverseConfig
from .core.errors import ConfigurationError, DataverseError, RequestFailed, RetryExhausted
from .core.telemetry import LOGGER_NAME, TelemetryConfig


def build_parser(registry: CommandRegistry) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dataverse",
        description="Work with Microsoft Dataverse environments from the command line",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--url",
        default=os.environ.get("DATAVERSE_URL"),
        help="Environment URL, e.g. https://org.crm.dynamics.com (env: DATAVERSE_URL)",
    )
    parser.add_argument("--tenant-id", default=os.environ.get("AZURE_TENANT_ID"), help="Tenant ID (env: AZURE_TENANT_ID)")
    parser.add_argument("--client-id", default=os.environ.get("AZURE_CLIENT_ID"), help="Application ID (env: AZURE_CLIENT_ID)")
    parser.add_argument(
        "--client-secret",
        default=os.environ.get("AZURE_CLIENT_SECRET"),
        help="Client secret for service principal auth (env: AZURE_CLIENT_SECRET)",
    )
    parser.add_argument("--interactive", action="store_true", help="Sign in through the browser")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log every request to stderr")

    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")
    for command in registry:
        command.configure(sub.add_parser(command.name, help=command.help))
    return parser


def build_credential(args: argparse.Namespace) -> TokenCredential:
    """Client secret -> direct token endpoint; ``--interactive`` -> browser; otherwise the default chain."""
    if args.client_secret:
        if not args.tenant_id or not args.client_id:
            raise ConfigurationError("--client-secret requires --tenant-id and --client-id")
        return ClientSecretTokenCredential(args.tenant_id, args.client_id, args.client_secret)
    if args.interactive:
        kwargs = {}
        if args.tenant_id:
            kwargs["tenant_id"] = args.tenant_id
        if args.client_id:
            kwargs["client_id"] = args.client_id
        return InteractiveBrowserCredential(**kwargs)
    return DefaultAzureCredential()


def _config(verbose: bool) -> DataverseConfig:
    config = DataverseConfig.from_env()
    if verbose:
        config = dataclasses.replace(config, telemetry=TelemetryConfig(enable_logging=True, log_level="DEBUG"))
    if config.telemetry is not None and config.telemetry.enable_logging:
        logging.basicConfig(stream=sys.stderr, format="%(asctime)s %(name)s %(levelname)s %(message)s")
        logging.getLogger(LOGGER_NAME).setLevel(config.telemetry.log_level)
    return config


def format_error(error: DataverseError) -> str:
    """Render an error for stderr."""
    if isinstance(error, RetryExhausted):
        return (
            f"Error: {error.message} (attempts: {error.attempts}, last status: {error.status_code})"
        )
    if isinstance(error, RequestFailed):
        parts = [f"Error: {error.message}"]
        if error.status_code:
            parts.append(f"status: {error.status_code}")
        if error.server_message:
            parts.append(f"server message: {error.server_message}")
        return " | ".join(parts)
    if error.status_code:
        return f"Error [{error.code}] (status {error.status_code}): {error.message}"
    return f"Error [{error.code}]: {error.message}"


def main(argv: Optional[List[str]] = None) -> int:
    registry = build_registry()
    parser = build_parser(registry)
    args = parser.parse_args(argv)
    command = registry.get(args.command)

    try:
        if command.needs_client:
            if not args.url:
                parser.error("--url (or DATAVERSE_URL) is required for this command")
            config = _config(args.verbose)
            with DataverseClient(args.url, build_credential(args), config) as client:
                result: Any = command.handler(args, client)
        else:
            result = command.handler(args, None)
    except DataverseError as e:
        print(format_error(e), file=sys.stderr)
        return 1
    except ClientAuthenticationError as e:
        print(f"Error [authentication_error]: {e.message}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
