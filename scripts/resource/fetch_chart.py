#!/usr/bin/env python3
"""
Fetch a chart version from a Harbor chart repository (the resource's "in").

Writes <basename>.tgz, <basename>.json and, for signed charts,
<basename>.tgz.prov into the destination directory and prints the resource
response to stdout.

Usage:
    python3 fetch_chart.py DESTINATION < request.json

Environment Variables:
    HARBOR_HTTP_TIMEOUT: Timeout in seconds for Harbor requests (default: 60)
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from common import (
    ChartDownloadError,
    ChartError,
    ExitCode,
    PostUploadFetchError,
    RemoteChartMetadata,
    setup_logging,
)
from harbor_client import DEFAULT_TIMEOUT, HarborClient
from resource_request import FetchRequest, read_request

logger = logging.getLogger(__name__)


class ChartFetcher:
    """Downloads one chart version and its metadata."""

    def __init__(self, client: HarborClient):
        self.client = client

    def fetch(self, request: FetchRequest, destination: Path) -> dict[str, Any]:
        """
        Download a chart version into a directory.

        Args:
            request: Parsed get request
            destination: Directory receiving the files

        Returns:
            Resource response (version and metadata)

        Raises:
            ChartError: If metadata or files can't be downloaded
        """
        chart_name = request.source.chart_name
        try:
            data = self.client.get_chart_version(chart_name, request.version)
        except PostUploadFetchError as e:
            raise ChartDownloadError(str(e)) from e
        metadata = RemoteChartMetadata.from_dict(data)

        basename = request.params.target_basename or f"{metadata.name}-{metadata.version}"
        destination.mkdir(parents=True, exist_ok=True)

        self.client.download(
            self.client.archive_url(chart_name, metadata.version, ".tgz"),
            destination / f"{basename}.tgz",
        )
        self.client.download(
            self.client.archive_url(chart_name, metadata.version, ".tgz.prov"),
            destination / f"{basename}.tgz.prov",
            required=False,
        )
        (destination / f"{basename}.json").write_text(json.dumps(data))

        logger.info(f"✓ Fetched {chart_name}:{metadata.version} into {destination}")
        return metadata.to_response()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Fetch a Helm chart from a Harbor chart repository"
    )
    parser.add_argument("destination", help="Directory to write the chart into")
    parser.add_argument(
        "--http-timeout",
        type=float,
        default=float(os.getenv("HARBOR_HTTP_TIMEOUT", DEFAULT_TIMEOUT)),
        help=f"Timeout for Harbor requests in seconds (default: {DEFAULT_TIMEOUT})",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    # Setup logging
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    try:
        request = read_request(sys.stdin, FetchRequest.from_dict)
        client = HarborClient.from_source(request.source, timeout=args.http_timeout)
        response = ChartFetcher(client).fetch(request, Path(args.destination).resolve())
    except ChartError as e:
        logger.error(f"✗ {e}")
        sys.exit(e.exit_code)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        sys.exit(ExitCode.FAILURE)

    sys.stdout.write(json.dumps(response, indent=2))
    sys.stdout.flush()
    sys.exit(ExitCode.SUCCESS)


if __name__ == "__main__":
    main()
