#!/usr/bin/env python3
"""
Verify a chart after upload by reading it back from Harbor.
"""

import logging
from typing import Any

from common import RemoteChartMetadata, VersionMismatchError
from harbor_client import HarborClient

logger = logging.getLogger(__name__)


class ChartVerifier:
    """Checks that Harbor serves the chart version that was uploaded."""

    def __init__(self, client: HarborClient):
        self.client = client

    def verify(self, chart_name: str, expected_version: str) -> dict[str, Any]:
        """
        Fetch the uploaded chart's metadata and compare versions.

        Args:
            chart_name: Chart name in the repository
            expected_version: Version that was packaged and uploaded

        Returns:
            Resource response built from the fetched metadata

        Raises:
            PostUploadFetchError: If the metadata can't be fetched
            VersionMismatchError: If Harbor reports a different version
        """
        data = self.client.get_chart_version(chart_name, expected_version)
        metadata = RemoteChartMetadata.from_dict(data)

        if metadata.version != expected_version:
            raise VersionMismatchError(
                f"Version mismatch in uploaded Helm chart. "
                f"Got: {metadata.version}, expected: {expected_version}"
            )

        logger.info(f"✓ Harbor reports {metadata.name} {metadata.version}")
        logger.debug(f"Digest: {metadata.digest}")
        return metadata.to_response()
