# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Data models for the Dataverse command library.

- :mod:`~dataverse_commands.models.metadata`: Web API metadata complex types (labels,
  option sets, lookups, relationships).
- :mod:`~dataverse_commands.models.columns`: Column kinds for table creation and the
  shorthand mapping :func:`~dataverse_commands.models.columns.column_from_spec`.

Import models from their modules directly; this package does not re-export them.
"""

__all__ = []
