#!/usr/bin/env python3
"""
Resolve the chart version to publish.

The version comes from params.version_file (when the file exists),
params.version, or, when neither is given, from the packaged chart itself
after packaging. Any version known up front is checked against
source.version_range before anything else runs.
"""

import logging
from pathlib import Path

from nodesemver import satisfies

from common import VersionFileError, VersionRangeViolation
from resource_request import OutParams

logger = logging.getLogger(__name__)


def check_version_range(version: str, version_range: str | None) -> None:
    """
    Check a version against an npm-style semantic version range.

    Comparator sets are joined by "||"; comparators within a set are AND'd.

    Args:
        version: Candidate version
        version_range: Range expression, or None for no constraint

    Raises:
        VersionRangeViolation: If the version is invalid or out of range
    """
    if version_range is None:
        return

    try:
        matches = satisfies(version, version_range)
    except ValueError as e:
        raise VersionRangeViolation(
            f"Version ({version}) is not a valid semantic version: {e}"
        ) from e

    if not matches:
        raise VersionRangeViolation(
            f"Version ({version}) does not satisfy source.version_range ({version_range})"
        )

    logger.info(f"✓ Version {version} satisfies range {version_range}")


def parse_inspected_version(output: str) -> str | None:
    """
    Extract the chart version from `helm show chart` output.

    Args:
        output: Stdout of helm show chart

    Returns:
        Version string, or None if no version line is present
    """
    for line in output.splitlines():
        if line.startswith("version:"):
            version = line.split(":", 1)[1].strip().strip("'\"")
            return version or None
    return None


class VersionResolver:
    """Resolves the candidate version from the put step parameters."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def read_version_file(self, version_file: str) -> str | None:
        """
        Read a version file relative to the resource root.

        Args:
            version_file: Path to the version file

        Returns:
            Trimmed file contents, or None if the file doesn't exist

        Raises:
            VersionFileError: If the file can't be read as UTF-8 text
        """
        path = self.root / version_file
        if not path.is_file():
            logger.warning(f"Version file not found: {path} - ignoring")
            return None

        try:
            version = path.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError) as e:
            raise VersionFileError(f"Unable to read version file {path}: {e}") from e

        logger.info(f"Read version {version!r} from {path}")
        return version or None

    def resolve(self, params: OutParams, version_range: str | None) -> str | None:
        """
        Resolve the candidate version and check it against the range.

        Args:
            params: Put step parameters
            version_range: source.version_range

        Returns:
            Candidate version, or None if it must be read from the package

        Raises:
            VersionRangeViolation: If the candidate is outside the range
        """
        version = params.version
        if params.version_file is not None:
            version = self.read_version_file(params.version_file) or version

        if version is None:
            logger.info("No version given - it will be read from the packaged chart")
            return None

        check_version_range(version, version_range)
        return version
