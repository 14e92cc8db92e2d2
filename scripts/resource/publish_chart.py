#!/usr/bin/env python3
"""
Publish a Helm chart to a Harbor chart repository (the resource's "out").

This script reads a put request from stdin and:
- Resolves and range-checks the chart version
- Packages (and optionally signs) a chart directory, or takes a .tgz as is
- Uploads the archive to Harbor
- Reads the chart back and checks the version Harbor reports

The JSON response is written to stdout only when every stage succeeds.

Usage:
    python3 publish_chart.py [ROOT] < request.json

Environment Variables:
    RESOURCE_ROOT: Directory relative paths resolve against (default: .)
    HELM_BIN: helm executable (default: helm)
    GPG_BIN: gpg executable (default: gpg)
    GPGCONF_BIN: gpgconf executable (default: gpgconf)
    HELM_COMMAND_TIMEOUT: Timeout in seconds for helm/gpg calls (default: 600)
    HARBOR_HTTP_TIMEOUT: Timeout in seconds for Harbor requests (default: 60)
    RESOURCE_TMPDIR: Parent of temporary directories (default: system temp)
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

from common import (
    ChartError,
    ChartNotFoundError,
    CommandRunner,
    ExitCode,
    setup_logging,
)
from gpg_key import require_signing_key
from harbor_client import DEFAULT_TIMEOUT, HarborClient
from package_chart import ChartPackager
from resource_request import PublishRequest, Source, read_request
from verify_chart import ChartVerifier
from version_resolver import VersionResolver, check_version_range
from workspace import packaging_workspace

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 600


class PublishPipeline:
    """Runs the publish stages in order, failing on the first error."""

    def __init__(
        self,
        root: Path,
        cmd_runner: CommandRunner | None = None,
        http_timeout: float = DEFAULT_TIMEOUT,
        temp_root: Path | None = None,
    ):
        self.root = Path(root).resolve()
        self.cmd_runner = cmd_runner or CommandRunner(cwd=self.root)
        self.http_timeout = http_timeout
        self.temp_root = temp_root
        self.resolver = VersionResolver(self.root)
        self.packager = ChartPackager(self.root, self.cmd_runner, temp_root=temp_root)

    def create_client(self, source: Source) -> HarborClient:
        return HarborClient.from_source(source, timeout=self.http_timeout)

    def locate_chart(self, chart: str) -> tuple[Path, bool]:
        """
        Resolve the chart parameter against the root.

        Args:
            chart: params.chart

        Returns:
            Tuple of (path, is_directory)

        Raises:
            ChartNotFoundError: If the path is neither a directory nor a file
        """
        chart_location = self.root / chart
        if chart_location.is_dir():
            return chart_location, True
        if chart_location.is_file():
            return chart_location, False
        raise ChartNotFoundError(f"Chart file ({chart_location}) not found")

    def run(self, request: PublishRequest) -> dict[str, Any]:
        """
        Publish the chart described by a put request.

        Args:
            request: Parsed put request

        Returns:
            Resource response (version and metadata)

        Raises:
            ChartError: On the first failing stage
        """
        source = request.source
        params = request.params

        logger.info("=" * 70)
        logger.info(f"Publishing chart: {source.chart_name}")
        logger.info("=" * 70)

        version = self.resolver.resolve(params, source.version_range)

        if params.sign:
            require_signing_key(params)

        chart_location, is_directory = self.locate_chart(params.chart)
        logger.info(f"Processing chart at {chart_location}")

        client = self.create_client(source)

        with packaging_workspace(self.temp_root) as workdir:
            if is_directory:
                chart_file = self.packager.build(chart_location, workdir, version, params)
            else:
                if params.sign:
                    logger.warning("Chart is already packaged - uploading it unsigned as is")
                chart_file = chart_location

            packaged_version = self.packager.inspect_version(chart_file)
            if version is not None and packaged_version != version:
                logger.warning(
                    f"Packaged chart reports version {packaged_version}, "
                    f"requested {version} - using the packaged version"
                )
            version = packaged_version
            check_version_range(version, source.version_range)

            client.upload_chart(chart_file, force=params.force)

        logger.info(f"- Name: {source.chart_name}")
        logger.info(f"- Version: {version}")

        response = ChartVerifier(client).verify(source.chart_name, version)

        logger.info("=" * 70)
        logger.info(f"✓ Successfully published: {source.chart_name}:{version}")
        logger.info("=" * 70)

        return response


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Publish a Helm chart to a Harbor chart repository"
    )
    parser.add_argument(
        "root",
        nargs="?",
        default=os.getenv("RESOURCE_ROOT", "."),
        help="Directory relative paths in params resolve against (default: .)",
    )
    parser.add_argument(
        "--helm-bin",
        type=str,
        default=os.getenv("HELM_BIN", "helm"),
        help="helm executable (default: helm)",
    )
    parser.add_argument(
        "--gpg-bin",
        type=str,
        default=os.getenv("GPG_BIN", "gpg"),
        help="gpg executable (default: gpg)",
    )
    parser.add_argument(
        "--gpgconf-bin",
        type=str,
        default=os.getenv("GPGCONF_BIN", "gpgconf"),
        help="gpgconf executable (default: gpgconf)",
    )
    parser.add_argument(
        "--command-timeout",
        type=float,
        default=float(os.getenv("HELM_COMMAND_TIMEOUT", DEFAULT_COMMAND_TIMEOUT)),
        help=f"Timeout for helm/gpg commands in seconds (default: {DEFAULT_COMMAND_TIMEOUT})",
    )
    parser.add_argument(
        "--http-timeout",
        type=float,
        default=float(os.getenv("HARBOR_HTTP_TIMEOUT", DEFAULT_TIMEOUT)),
        help=f"Timeout for Harbor requests in seconds (default: {DEFAULT_TIMEOUT})",
    )
    parser.add_argument(
        "--temp-dir",
        type=str,
        default=os.getenv("RESOURCE_TMPDIR"),
        help="Parent directory for temporary directories",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    # Setup logging
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    root = Path(args.root).resolve()
    cmd_runner = CommandRunner(
        cwd=root,
        verbose=args.verbose,
        timeout=args.command_timeout,
        helm_bin=args.helm_bin,
        gpg_bin=args.gpg_bin,
        gpgconf_bin=args.gpgconf_bin,
    )
    pipeline = PublishPipeline(
        root=root,
        cmd_runner=cmd_runner,
        http_timeout=args.http_timeout,
        temp_root=Path(args.temp_dir) if args.temp_dir else None,
    )

    try:
        request = read_request(sys.stdin, PublishRequest.from_dict)
        response = pipeline.run(request)
    except ChartError as e:
        logger.error(f"✗ {e}")
        sys.exit(e.exit_code)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        sys.exit(ExitCode.FAILURE)

    sys.stdout.write(json.dumps(response))
    sys.stdout.flush()
    sys.exit(ExitCode.SUCCESS)


if __name__ == "__main__":
    main()
