#!/usr/bin/env python3
"""
Shared utilities for the Harbor chart resource.

This module provides the pieces used by both the publish ("out") and the
fetch ("in") pipelines: exit codes, the error hierarchy, chart metadata
models and the external command runner.
"""

import logging
import subprocess
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any

import yaml


class ExitCode(IntEnum):
    """Exit codes reported by the resource scripts."""

    SUCCESS = 0
    FAILURE = 1
    VALIDATION_ERROR = 2
    NOT_FOUND = 3
    COMMAND_TIMEOUT = 5
    INVALID_REQUEST = 10
    VERSION_RANGE_VIOLATION = 11
    VERSION_UNRESOLVABLE = 12
    INSPECT_FAILED = 13
    VERSION_FILE_UNREADABLE = 14
    MISSING_SIGNING_KEY = 20
    GPG_IMPORT_FAILED = 21
    KEY_ID_NOT_FOUND = 22
    KEYRING_EXPORT_FAILED = 23
    DEPENDENCY_BUILD_FAILED = 30
    PACKAGING_FAILED = 31
    UPLOAD_FAILED = 40
    SERVER_REPORTED_ERROR = 41
    NOT_PERSISTED = 42
    MALFORMED_RESPONSE = 43
    POST_UPLOAD_FETCH_FAILED = 50
    VERSION_MISMATCH = 51
    DOWNLOAD_FAILED = 60
    UPLOAD_REJECTED = 99


class ChartError(Exception):
    """Base exception for chart-related errors."""

    exit_code: int = ExitCode.FAILURE


class ChartNotFoundError(ChartError):
    """Raised when a chart directory, archive or Chart.yaml is not found."""

    exit_code = ExitCode.NOT_FOUND


class ChartValidationError(ChartError):
    """Raised when Chart.yaml cannot be parsed."""

    exit_code = ExitCode.VALIDATION_ERROR


class CommandTimeoutError(ChartError):
    """Raised when an external command exceeds its timeout."""

    exit_code = ExitCode.COMMAND_TIMEOUT


class InvalidRequestError(ChartError):
    """Raised when the JSON request on stdin is malformed or incomplete."""

    exit_code = ExitCode.INVALID_REQUEST


class VersionRangeViolation(ChartError):
    """Raised when a version does not satisfy source.version_range."""

    exit_code = ExitCode.VERSION_RANGE_VIOLATION


class VersionFileError(ChartError):
    """Raised when params.version_file exists but cannot be read as text."""

    exit_code = ExitCode.VERSION_FILE_UNREADABLE


class VersionUnresolvableError(ChartError):
    """Raised when no version can be read from the packaged chart."""

    exit_code = ExitCode.VERSION_UNRESOLVABLE


class ChartInspectError(ChartError):
    """Raised when `helm show chart` fails on the packaged chart."""

    exit_code = ExitCode.INSPECT_FAILED


class MissingSigningKeyError(ChartError):
    """Raised when signing is requested without key_data or key_file."""

    exit_code = ExitCode.MISSING_SIGNING_KEY


class GpgImportError(ChartError):
    """Raised when gpg fails to import the signing key."""

    exit_code = ExitCode.GPG_IMPORT_FAILED


class KeyIdNotFoundError(ChartError):
    """Raised when gpg succeeds but reports no imported secret key."""

    exit_code = ExitCode.KEY_ID_NOT_FOUND


class KeyringExportError(ChartError):
    """Raised when the imported key cannot be exported for helm."""

    exit_code = ExitCode.KEYRING_EXPORT_FAILED


class DependencyBuildError(ChartError):
    """Raised when `helm dependency build` fails."""

    exit_code = ExitCode.DEPENDENCY_BUILD_FAILED


class PackagingError(ChartError):
    """Raised when `helm package` fails or produces no archive."""

    exit_code = ExitCode.PACKAGING_FAILED


class UploadError(ChartError):
    """Raised when the upload request cannot be sent."""

    exit_code = ExitCode.UPLOAD_FAILED


class UploadRejectedError(ChartError):
    """
    Raised when Harbor answers the upload with a status other than 201.

    The exit code mirrors the HTTP status: 4xx map to 100-199 and 5xx to
    200-255. Any other status maps to ExitCode.UPLOAD_REJECTED.
    """

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        if 400 <= status_code <= 555:
            self.exit_code = status_code - 300
        else:
            self.exit_code = ExitCode.UPLOAD_REJECTED


class ServerReportedError(ChartError):
    """Raised when Harbor acknowledges the upload with an error field."""

    exit_code = ExitCode.SERVER_REPORTED_ERROR


class NotPersistedError(ChartError):
    """Raised when Harbor acknowledges the upload without saved=true."""

    exit_code = ExitCode.NOT_PERSISTED


class MalformedResponseError(ChartError):
    """Raised when Harbor returns a body that is not the expected JSON."""

    exit_code = ExitCode.MALFORMED_RESPONSE


class PostUploadFetchError(ChartError):
    """Raised when the uploaded chart's metadata cannot be fetched."""

    exit_code = ExitCode.POST_UPLOAD_FETCH_FAILED


class VersionMismatchError(ChartError):
    """Raised when Harbor reports a different version than was uploaded."""

    exit_code = ExitCode.VERSION_MISMATCH


class ChartDownloadError(ChartError):
    """Raised when a chart archive or provenance file cannot be downloaded."""

    exit_code = ExitCode.DOWNLOAD_FAILED


@dataclass(frozen=True)
class ChartMetadata:
    """Parsed Chart.yaml metadata."""

    name: str
    version: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChartMetadata":
        """Create ChartMetadata from parsed YAML dict."""
        return cls(
            name=str(data.get("name", "")),
            version=str(data.get("version", "")),
        )


@dataclass(frozen=True)
class RemoteChartMetadata:
    """Chart version metadata as reported by Harbor's chart repository API."""

    name: str
    version: str
    app_version: str
    description: str
    created: str
    digest: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemoteChartMetadata":
        """
        Create RemoteChartMetadata from a chart version response.

        Args:
            data: Decoded JSON body of GET .../charts/{name}/{version}

        Returns:
            RemoteChartMetadata object

        Raises:
            MalformedResponseError: If the body has no metadata object
        """
        metadata = data.get("metadata") if isinstance(data, dict) else None
        if not isinstance(metadata, dict):
            raise MalformedResponseError(
                "Chart version response does not contain a metadata object"
            )

        return cls(
            name=str(metadata.get("name", "")),
            version=str(metadata.get("version", "")),
            app_version=str(metadata.get("appVersion", "")),
            description=str(metadata.get("description", "")),
            created=str(metadata.get("created", "")),
            digest=str(metadata.get("digest", "")),
        )

    def to_response(self) -> dict[str, Any]:
        """Build the resource response (version and metadata) for Concourse."""
        return {
            "version": {"version": self.version, "digest": self.digest},
            "metadata": [
                {"name": "created", "value": self.created},
                {"name": "description", "value": self.description},
                {"name": "appVersion", "value": self.app_version},
            ],
        }


def read_chart_yaml(chart_path: Path) -> ChartMetadata:
    """
    Read and parse Chart.yaml metadata from a chart directory.

    Args:
        chart_path: Path to chart directory

    Returns:
        ChartMetadata object

    Raises:
        ChartNotFoundError: If Chart.yaml doesn't exist
        ChartValidationError: If Chart.yaml is invalid
    """
    chart_yaml = chart_path / "Chart.yaml"

    if not chart_yaml.is_file():
        raise ChartNotFoundError(f"Chart.yaml not found in {chart_path}")

    try:
        with open(chart_yaml) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ChartValidationError(f"Failed to parse Chart.yaml: {e}") from e
    except OSError as e:
        raise ChartNotFoundError(f"Failed to read Chart.yaml: {e}") from e

    if not isinstance(data, dict):
        raise ChartValidationError(f"Invalid Chart.yaml format in {chart_path}")

    return ChartMetadata.from_dict(data)  # type: ignore[arg-type]


class CommandRunner:
    """Executes external commands with consistent error handling."""

    def __init__(
        self,
        cwd: Path | None = None,
        verbose: bool = False,
        timeout: float | None = None,
        helm_bin: str = "helm",
        gpg_bin: str = "gpg",
        gpgconf_bin: str = "gpgconf",
    ):
        self.cwd = cwd
        self.verbose = verbose
        self.timeout = timeout
        self.helm_bin = helm_bin
        self.gpg_bin = gpg_bin
        self.gpgconf_bin = gpgconf_bin
        self.logger = logging.getLogger(self.__class__.__name__)

    def run(
        self,
        args: list[str],
        check: bool = True,
        input: str | None = None,
    ) -> tuple[int, str, str]:
        """
        Run a command and return exit code, stdout, stderr.

        Args:
            args: Command and arguments to execute
            check: If True, raise exception on non-zero exit
            input: Text written to the command's stdin, which is then closed

        Returns:
            Tuple of (exit_code, stdout, stderr)

        Raises:
            CommandTimeoutError: If the command runs longer than the timeout
        """
        if self.verbose:
            self.logger.debug(f"Running: {' '.join(args)}")

        try:
            result = subprocess.run(
                args,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                check=check,
                input=input,
                stdin=None if input is not None else subprocess.DEVNULL,
                timeout=self.timeout,
            )
            return (result.returncode, result.stdout or "", result.stderr or "")
        except subprocess.CalledProcessError as e:
            return (e.returncode, e.stdout or "", e.stderr or "")
        except subprocess.TimeoutExpired as e:
            raise CommandTimeoutError(
                f"Command timed out after {self.timeout}s: {' '.join(args[:2])}"
            ) from e

    def run_helm(
        self, subcommand: str, *args: str, check: bool = True
    ) -> tuple[int, str, str]:
        """
        Run a helm command.

        Args:
            subcommand: Helm subcommand (e.g., 'package', 'show')
            args: Additional arguments
            check: If True, raise exception on non-zero exit

        Returns:
            Tuple of (exit_code, stdout, stderr)
        """
        return self.run([self.helm_bin, subcommand, *args], check=check)

    def run_gpg(
        self, *args: str, input: str | None = None, check: bool = True
    ) -> tuple[int, str, str]:
        """
        Run a gpg command.

        Args:
            args: gpg arguments
            input: Text streamed to gpg's stdin (e.g. a passphrase)
            check: If True, raise exception on non-zero exit

        Returns:
            Tuple of (exit_code, stdout, stderr)
        """
        return self.run([self.gpg_bin, *args], check=check, input=input)

    def run_gpgconf(self, *args: str, check: bool = True) -> tuple[int, str, str]:
        """Run a gpgconf command (e.g. to stop a homedir's gpg-agent)."""
        return self.run([self.gpgconf_bin, *args], check=check)


def setup_logging(
    level: int = logging.INFO, format_string: str | None = None
) -> logging.Logger:
    """
    Configure logging with consistent format.

    Records go to stderr; stdout is reserved for the JSON response.

    Args:
        level: Logging level (default: INFO)
        format_string: Custom format string (default: "%(levelname)s: %(message)s")

    Returns:
        Root logger instance
    """
    if format_string is None:
        format_string = "%(levelname)s: %(message)s"

    logging.basicConfig(level=level, format=format_string, force=True)
    return logging.getLogger()
