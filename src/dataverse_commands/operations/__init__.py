# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Operation namespace classes for the Dataverse command library.

- RecordOperations: CRUD operations on records
- QueryOperations: Paged collection retrieval
- TableOperations: Table and column definitions
- MetadataOperations: Metadata inspection and global option sets
"""

__all__ = []
