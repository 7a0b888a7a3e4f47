# Copyright (c) Microsoft Corporation.
# Licensed under the MIT license.

"""
Export a whole Dataverse table to a JSON Lines file.

Shows paged retrieval with a page-size hint, a per-page retry budget, a
deadline, and a telemetry hook that reports throttling retries as they happen.

Usage::

    python examples/basic/paged_export.py https://yourorg.crm.dynamics.com account accounts.jsonl
"""

import json
import sys

from azure.identity import InteractiveBrowserCredential

from dataverse_commands import CancellationToken, DataverseClient
from dataverse_commands.core.config import DataverseConfig
from dataverse_commands.core.errors import Cancelled, RequestFailed, RetryExhausted
from dataverse_commands.core.telemetry import TelemetryConfig


class RetryReporter:
    def on_retry(self, operation, state):
        print(f"  {operation}: HTTP {state.status_code}, retry {state.attempt} in {state.delay:.0f}s")


def main() -> int:
    if len(sys.argv) != 4:
        print(__doc__)
        return 2
    base_url, table, path = sys.argv[1:]

    config = DataverseConfig(page_size=1000, fetch_max_retries=5, telemetry=TelemetryConfig(hooks=[RetryReporter()]))
    with DataverseClient(base_url, InteractiveBrowserCredential(), config) as client:
        try:
            with open(path, "w", encoding="utf-8") as out:
                count = 0
                for page in client.query.pages(table, cancel=CancellationToken(timeout=600)):
                    for record in page.records:
                        out.write(json.dumps(record) + "\n")
                    count += len(page.records)
                    print(f"  {count} records so far")
        except RetryExhausted as e:
            print(f"Gave up after {e.attempts} attempts on {e.url} (HTTP {e.status_code})")
            return 1
        except RequestFailed as e:
            print(f"Request failed after {e.pages_fetched} page(s): {e.message}")
            return 1
        except Cancelled as e:
            print(f"Stopped after {e.pages_fetched} page(s): {e.message}")
            return 1
    print(f"Wrote {count} records to {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
