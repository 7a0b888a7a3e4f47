# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Environment discovery through the Power Platform CLI.

:func:`list_environments` runs ``pac env list`` and parses its output, either JSON
or the fixed-width table the CLI prints by default, into :class:`Environment`
records.

Example::

    for env in list_environments():
        marker = "*" if env.active else " "
        print(marker, env.display_name, env.url)
"""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .core import _error_codes as ec
from .core.errors import EnvironmentListError
from .core.telemetry import LOGGER_NAME

_log = logging.getLogger(f"{LOGGER_NAME}.environments")

# Table header titles, in the order the CLI prints them
_COLUMNS: Tuple[Tuple[str, str], ...] = (
    ("active", "Active"),
    ("display_name", "Display Name"),
    ("environment_id", "Environment ID"),
    ("url", "Environment URL"),
    ("unique_name", "Unique Name"),
)

_JSON_KEYS: Dict[str, Tuple[str, ...]] = {
    "display_name": ("displayname", "friendlyname", "name"),
    "environment_id": ("environmentid", "id"),
    "url": ("environmenturl", "url", "instanceurl"),
    "unique_name": ("uniquename", "domainname"),
    "active": ("isactive", "active", "iscurrent"),
}


@dataclass(frozen=True)
class Environment:
    """One environment known to the Power Platform CLI."""

    display_name: str
    environment_id: str
    url: str
    unique_name: Optional[str] = None
    active: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def list_environments(
    cli: str = "pac",
    args: Sequence[str] = ("env", "list"),
    runner: Callable[..., Any] = subprocess.run,
    timeout: float = 120.0,
) -> List[Environment]:
    """
    Run the Power Platform CLI and return the environments it lists.

    :param cli: Executable name or path. Default is ``pac``.
    :type cli: str
    :param args: Arguments passed to the executable. Default is ``("env", "list")``.
    :param runner: Process runner with the :func:`subprocess.run` signature.
    :param timeout: Seconds to wait for the CLI to finish.
    :type timeout: float
    :return: Environments in the order the CLI printed them.
    :rtype: list[Environment]

    :raises ~dataverse_commands.core.errors.EnvironmentListError: If the executable is
        missing, exits non-zero, times out, or prints nothing parseable.
    """
    command = [cli, *args]
    _log.debug("Running %s", " ".join(command))
    try:
        completed = runner(command, capture_output=True, text=True, timeout=timeout, check=False)
    except FileNotFoundError as e:
        raise EnvironmentListError(
            f"'{cli}' was not found. Install the Power Platform CLI and make sure it is on PATH.",
            subcode=ec.ENV_CLI_NOT_FOUND,
        ) from e
    except subprocess.TimeoutExpired as e:
        raise EnvironmentListError(
            f"'{' '.join(command)}' did not finish within {timeout}s",
            subcode=ec.ENV_CLI_FAILED,
        ) from e

    if completed.returncode != 0:
        stderr = (completed.stderr or completed.stdout or "").strip()
        raise EnvironmentListError(
            f"'{' '.join(command)}' exited with code {completed.returncode}: {stderr[:500]}",
            subcode=ec.ENV_CLI_FAILED,
            details={"returncode": completed.returncode},
        )
    return parse_environments(completed.stdout or "")


def parse_environments(output: str) -> List[Environment]:
    """Parse CLI output: a JSON array (or ``{"value": [...]}``) or the default table."""
    text = output.strip()
    if text.startswith("[") or text.startswith("{"):
        try:
            data = json.loads(text)
        except ValueError as e:
            raise EnvironmentListError(f"CLI output is not valid JSON: {e}", subcode=ec.ENV_CLI_OUTPUT) from e
        return _from_json(data)
    return _from_table(output)


def _from_json(data: Any) -> List[Environment]:
    if isinstance(data, dict):
        data = data.get("value", data.get("environments"))
    if not isinstance(data, list):
        raise EnvironmentListError("CLI JSON output is not a list of environments", subcode=ec.ENV_CLI_OUTPUT)
    envs: List[Environment] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        lowered = {str(k).lower(): v for k, v in item.items()}
        fields: Dict[str, Any] = {}
        for name, aliases in _JSON_KEYS.items():
            fields[name] = next((lowered[a] for a in aliases if lowered.get(a) not in (None, "")), None)
        envs.append(
            Environment(
                display_name=str(fields["display_name"] or ""),
                environment_id=str(fields["environment_id"] or ""),
                url=str(fields["url"] or ""),
                unique_name=fields["unique_name"],
                active=_truthy(fields["active"]),
            )
        )
    return envs


def _from_table(output: str) -> List[Environment]:
    lines = output.splitlines()
    header_index = next(
        (i for i, line in enumerate(lines) if "Environment ID" in line and "Display Name" in line),
        None,
    )
    if header_index is None:
        raise EnvironmentListError(
            "Could not find the environment table header in CLI output",
            subcode=ec.ENV_CLI_OUTPUT,
        )
    header = lines[header_index]
    # Column boundaries come from header title positions
    starts = sorted((header.find(title), name) for name, title in _COLUMNS if header.find(title) >= 0)
    if "display_name" not in {n for _, n in starts} or "url" not in {n for _, n in starts}:
        raise EnvironmentListError("Environment table header is missing columns", subcode=ec.ENV_CLI_OUTPUT)

    envs: List[Environment] = []
    for line in lines[header_index + 1:]:
        if not line.strip():
            continue
        cells: Dict[str, str] = {}
        for idx, (start, name) in enumerate(starts):
            end = starts[idx + 1][0] if idx + 1 < len(starts) else None
            cells[name] = line[start:end].strip() if end is not None else line[start:].strip()
        if not cells.get("url", "").startswith("http"):
            continue
        envs.append(
            Environment(
                display_name=cells.get("display_name", ""),
                environment_id=cells.get("environment_id", ""),
                url=cells.get("url", ""),
                unique_name=cells.get("unique_name") or None,
                active=cells.get("active", "") == "*",
            )
        )
    return envs


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1", "*")
    return bool(value)


__all__ = ["Environment", "list_environments", "parse_environments"]
