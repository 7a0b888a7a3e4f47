# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""Subcode constants attached to :class:`~dataverse_commands.core.errors.DataverseError`."""

# HTTP subcodes
HTTP_400 = "http_400"
HTTP_401 = "http_401"
HTTP_403 = "http_403"
HTTP_404 = "http_404"
HTTP_409 = "http_409"
HTTP_412 = "http_412"
HTTP_415 = "http_415"
HTTP_429 = "http_429"
HTTP_500 = "http_500"
HTTP_502 = "http_502"
HTTP_503 = "http_503"
HTTP_504 = "http_504"

# Status codes the paginated fetcher treats as transient besides 5xx
TRANSIENT_STATUS_CODES = frozenset({429})

# Validation / configuration subcodes
VALIDATION_UNSUPPORTED_COLUMN_TYPE = "validation_unsupported_column_type"
VALIDATION_ENUM_NO_MEMBERS = "validation_enum_no_members"
VALIDATION_ENUM_NON_INT_VALUE = "validation_enum_non_int_value"
VALIDATION_EMPTY_OPTIONS = "validation_empty_options"
CONFIG_BASE_ADDRESS = "config_base_address"
CONFIG_COLLECTION_NAME = "config_collection_name"
CONFIG_PAGE_SIZE = "config_page_size"
CONFIG_MAX_RETRIES = "config_max_retries"
CONFIG_ENV_VALUE = "config_env_value"

# Fetch subcodes
FETCH_DECODE = "fetch_decode"
FETCH_TRANSPORT = "fetch_transport"
FETCH_NEXT_LINK_CYCLE = "fetch_next_link_cycle"
FETCH_RETRY_EXHAUSTED = "fetch_retry_exhausted"
FETCH_CANCELLED = "fetch_cancelled"
FETCH_DEADLINE = "fetch_deadline"

# Metadata subcodes
METADATA_ENTITYSET_NOT_FOUND = "metadata_entityset_not_found"
METADATA_TABLE_NOT_FOUND = "metadata_table_not_found"
METADATA_TABLE_ALREADY_EXISTS = "metadata_table_already_exists"
METADATA_COLUMN_NOT_FOUND = "metadata_column_not_found"
METADATA_OPTIONSET_NOT_FOUND = "metadata_optionset_not_found"

# Authentication subcodes
AUTH_TOKEN_REQUEST_FAILED = "auth_token_request_failed"
AUTH_TOKEN_MISSING = "auth_token_missing"

# Environment listing subcodes
ENV_CLI_NOT_FOUND = "env_cli_not_found"
ENV_CLI_FAILED = "env_cli_failed"
ENV_CLI_OUTPUT = "env_cli_output"


def http_subcode(status_code: int) -> str:
    """Return the ``http_<status>`` subcode for a status code."""
    return f"http_{status_code}"
