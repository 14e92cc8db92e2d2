#!/usr/bin/env python3
"""
Client for Harbor's chart repository API.

Every call is a fresh request carrying its own Basic auth header; the
upload is multipart and its Content-Length must not leak into later calls.
"""

import logging
from pathlib import Path
from typing import Any

import requests  # type: ignore

from common import (
    ChartDownloadError,
    MalformedResponseError,
    NotPersistedError,
    PostUploadFetchError,
    ServerReportedError,
    UploadError,
    UploadRejectedError,
)
from resource_request import Source

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60


class HarborClient:
    """Talks to the chart repository of one Harbor project."""

    def __init__(
        self,
        server_url: str,
        project: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.server_url = server_url if server_url.endswith("/") else f"{server_url}/"
        self.project = project
        self.username = username
        self.password = password
        self.timeout = timeout

    @classmethod
    def from_source(cls, source: Source, timeout: float = DEFAULT_TIMEOUT) -> "HarborClient":
        """Create a client from the resource source configuration."""
        if source.has_credentials:
            return cls(
                source.server_url,
                source.project,
                source.basic_auth_username,
                source.basic_auth_password,
                timeout=timeout,
            )
        return cls(source.server_url, source.project, timeout=timeout)

    @property
    def charts_url(self) -> str:
        return f"{self.server_url}api/chartrepo/{self.project}/charts"

    def chart_version_url(self, name: str, version: str) -> str:
        return f"{self.charts_url}/{name}/{version}"

    def archive_url(self, name: str, version: str, suffix: str = ".tgz") -> str:
        """URL of a chart archive (or its .prov file) in the repository index."""
        return f"{self.server_url}chartrepo/{self.project}/charts/{name}-{version}{suffix}"

    def _auth(self) -> requests.auth.HTTPBasicAuth | None:
        if self.username and self.password:
            return requests.auth.HTTPBasicAuth(self.username, self.password)
        return None

    def upload_chart(self, chart_file: Path, force: bool = False) -> dict[str, Any]:
        """
        Upload a packaged chart and validate Harbor's acknowledgment.

        Args:
            chart_file: Path to the .tgz archive
            force: Overwrite an existing chart version

        Returns:
            Decoded acknowledgment body

        Raises:
            UploadError: If the request can't be sent
            UploadRejectedError: If the status is not 201
            MalformedResponseError: If the body is not a JSON object
            ServerReportedError: If the body has an error field
            NotPersistedError: If the body's saved field is not true
        """
        params = {"force": "true"} if force else None
        logger.info(f"Uploading chart file: {chart_file} to {self.charts_url}")

        try:
            with open(chart_file, "rb") as f:
                response = requests.post(
                    self.charts_url,
                    files={"chart": (chart_file.name, f, "application/gzip")},
                    params=params,
                    auth=self._auth(),
                    timeout=self.timeout,
                )
        except (requests.exceptions.RequestException, OSError) as e:
            raise UploadError(f"Upload of chart file has failed: {e}") from e

        if response.status_code != 201:
            if response.text:
                logger.error(f"Response body:\n{response.text}")
            raise UploadRejectedError(
                response.status_code,
                f"An error occurred while uploading the chart: "
                f"{response.status_code} - {response.reason}",
            )

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Upload response is not valid JSON: {response.text!r}"
            ) from e

        if not isinstance(body, dict):
            raise MalformedResponseError(f"Unexpected upload response: {body!r}")

        if body.get("error") is not None:
            raise ServerReportedError(
                f"An error occurred while uploading the chart: {body['error']}"
            )

        if body.get("saved") is not True:
            raise NotPersistedError(
                f"Helm chart has not been saved (saved={body.get('saved')!r})"
            )

        logger.info("✓ Helm chart has been uploaded")
        return body

    def get_chart_version(self, name: str, version: str) -> dict[str, Any]:
        """
        Fetch metadata of one chart version.

        Args:
            name: Chart name
            version: Chart version

        Returns:
            Decoded response body

        Raises:
            PostUploadFetchError: If the request fails or is not 2xx
            MalformedResponseError: If the body is not JSON
        """
        url = self.chart_version_url(name, version)
        logger.info(f"Fetching chart data from {url}")

        try:
            response = requests.get(url, auth=self._auth(), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise PostUploadFetchError(f"Download of chart information failed: {e}") from e

        if not response.ok:
            if response.text:
                logger.error(f"Response body:\n{response.text}")
            raise PostUploadFetchError(
                f"Download of chart information failed: "
                f"{response.status_code} - {response.reason}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Chart information is not valid JSON: {response.text!r}"
            ) from e

    def download(
        self, url: str, destination: Path, required: bool = True
    ) -> Path | None:
        """
        Download a file from the repository.

        Args:
            url: File URL
            destination: Target file path
            required: If False, a 404 is skipped instead of failing

        Returns:
            The destination path, or None if an optional file doesn't exist

        Raises:
            ChartDownloadError: If the request fails or is not 2xx
        """
        logger.info(f"Downloading {url}")

        try:
            response = requests.get(url, auth=self._auth(), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ChartDownloadError(f"Download of {url} failed: {e}") from e

        if response.status_code == 404 and not required:
            logger.warning(f"⚠️  {url} not found - skipping")
            return None

        if not response.ok:
            raise ChartDownloadError(
                f"Download of {url} failed: {response.status_code} - {response.reason}"
            )

        destination.write_bytes(response.content)
        logger.info(f"✓ Wrote {destination}")
        return destination
