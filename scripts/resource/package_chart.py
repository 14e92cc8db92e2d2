#!/usr/bin/env python3
"""
Package a Helm chart from its source directory.

This module turns a chart directory into a .tgz archive, handling:
- Repository registration for URLs listed in the dependency descriptor
- Dependency building
- Optional signing with an isolated GPG keyring
- Package verification and post-hoc version inspection
"""

import logging
import re
from pathlib import Path
from urllib.parse import urlparse

from common import (
    ChartInspectError,
    CommandRunner,
    DependencyBuildError,
    PackagingError,
    VersionUnresolvableError,
    read_chart_yaml,
)
from gpg_key import GpgKeyImporter, SigningContext, resolve_key_file
from resource_request import OutParams
from version_resolver import parse_inspected_version
from workspace import keyring_home

logger = logging.getLogger(__name__)

DEPENDENCY_FILES = ("requirements.yaml", "Chart.lock")

REPOSITORY_URL_PATTERN = re.compile(
    r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"[-a-zA-Z0-9()@:%_+.~#?&/=]*"
)


def find_dependency_file(chart_path: Path) -> Path | None:
    """Return the first dependency descriptor present in the chart."""
    for filename in DEPENDENCY_FILES:
        candidate = chart_path / filename
        if candidate.is_file():
            return candidate
    return None


def find_repository_urls(dependency_file: Path) -> list[str]:
    """
    Scan a dependency descriptor for repository URLs.

    Args:
        dependency_file: requirements.yaml or Chart.lock

    Returns:
        Repository URLs in file order, without duplicates
    """
    urls: list[str] = []
    with open(dependency_file, encoding="utf-8") as f:
        for line in f:
            match = REPOSITORY_URL_PATTERN.search(line)
            if match and match.group(0) not in urls:
                urls.append(match.group(0))
    return urls


def repository_name(url: str) -> str | None:
    """
    Derive a repository name from the first label of the URL's host.

    Args:
        url: Repository URL

    Returns:
        Repository name, or None if the URL has no host
    """
    host = urlparse(url).hostname
    if not host:
        return None
    if host.startswith("www."):
        host = host[len("www."):]
    return host.split(".", 1)[0] or None


def unique_name(name: str, taken: set[str]) -> str:
    """Return `name`, or `name-2`, `name-3`, ... if it is already taken."""
    candidate = name
    suffix = 2
    while candidate in taken:
        candidate = f"{name}-{suffix}"
        suffix += 1
    return candidate


class ChartPackager:
    """Packages Helm charts."""

    def __init__(
        self,
        root: Path,
        cmd_runner: CommandRunner,
        key_importer: GpgKeyImporter | None = None,
        temp_root: Path | None = None,
    ):
        self.root = Path(root)
        self.cmd_runner = cmd_runner
        self.key_importer = key_importer or GpgKeyImporter(cmd_runner)
        self.temp_root = temp_root

    def register_repositories(self, chart_path: Path) -> None:
        """
        Register repositories referenced by the dependency descriptor.

        Every `helm repo add` finishes before this method returns, so the
        dependency build that follows sees all of them.

        Args:
            chart_path: Path to chart directory
        """
        dependency_file = find_dependency_file(chart_path)
        if dependency_file is None:
            logger.info("No dependency descriptor found - skipping repository setup")
            return

        logger.info(f"Found {dependency_file.name}. Adding repositories...")

        taken: set[str] = set()
        for url in find_repository_urls(dependency_file):
            name = repository_name(url)
            if name is None:
                logger.warning(f"Can't capture name from repository: {url}")
                continue
            name = unique_name(name, taken)
            taken.add(name)

            logger.info(f"Adding repository {name}: {url}")
            exit_code, _stdout, stderr = self.cmd_runner.run_helm(
                "repo", "add", name, url, check=False
            )
            if exit_code != 0:
                logger.warning(f"⚠️  Failed to add repository {name} ({url})")
                if stderr:
                    logger.warning(f"Stderr:\n{stderr}")

    def build_dependencies(self, chart_path: Path) -> None:
        """Build chart dependencies."""
        logger.info('Performing "helm dependency build"...')

        exit_code, stdout, stderr = self.cmd_runner.run_helm(
            "dependency", "build", str(chart_path), check=False
        )

        if exit_code != 0:
            logger.error("✗ Retrieval of chart dependencies failed")
            if stdout:
                logger.error(f"Stdout:\n{stdout}")
            if stderr:
                logger.error(f"Stderr:\n{stderr}")
            raise DependencyBuildError(
                f"helm dependency build returned exit code {exit_code}"
            )

        logger.info("✓ Dependencies built successfully")
        if stdout:
            logger.debug(f"Dependency output:\n{stdout}")

    def package(
        self,
        chart_path: Path,
        destination: Path,
        version: str | None = None,
        app_version: str | None = None,
        signing: SigningContext | None = None,
    ) -> None:
        """
        Package the chart using helm.

        Args:
            chart_path: Path to chart directory
            destination: Directory receiving the archive
            version: Overrides the chart version
            app_version: Overrides the chart appVersion
            signing: Key material for signing, if requested

        Raises:
            PackagingError: If helm package fails
        """
        args: list[str] = ["--destination", str(destination)]
        if signing is not None:
            args.extend(
                [
                    "--sign",
                    "--key",
                    signing.key_id,
                    "--keyring",
                    str(signing.keyring_file),
                ]
            )
            if signing.passphrase_file is not None:
                args.extend(["--passphrase-file", str(signing.passphrase_file)])
        if version is not None:
            args.extend(["--version", version])
        if app_version is not None:
            args.extend(["--app-version", app_version])
        args.append(str(chart_path))

        logger.info('Performing "helm package"...')
        exit_code, stdout, stderr = self.cmd_runner.run_helm(
            "package", *args, check=False
        )

        if exit_code != 0:
            logger.error("✗ Packaging of chart failed")
            if stdout:
                logger.error(f"Stdout:\n{stdout}")
            if stderr:
                logger.error(f"Stderr:\n{stderr}")
            raise PackagingError(f"helm package returned exit code {exit_code}")

        logger.info("✓ Chart packaged successfully")

    def build(
        self,
        chart_path: Path,
        workdir: Path,
        version: str | None,
        params: OutParams,
    ) -> Path:
        """
        Build a packaged archive from a chart directory.

        Args:
            chart_path: Path to chart directory
            workdir: Packaging workspace
            version: Resolved version, or None to keep Chart.yaml's
            params: Put step parameters (app_version and signing)

        Returns:
            Path to the packaged archive

        Raises:
            ChartNotFoundError: If Chart.yaml doesn't exist
            DependencyBuildError: If dependencies can't be built
            PackagingError: If packaging fails or the archive is missing
        """
        metadata = read_chart_yaml(chart_path)
        logger.info(f"Chart name: {metadata.name}")
        logger.info(f"Chart version: {metadata.version}")

        self.register_repositories(chart_path)
        self.build_dependencies(chart_path)

        if params.sign:
            key_file = resolve_key_file(params, workdir, self.root)
            with keyring_home(self.temp_root, self.cmd_runner) as home:
                signing = self.key_importer.prepare(
                    home, key_file, params.key_passphrase
                )
                self.package(
                    chart_path, workdir, version, params.app_version, signing
                )
        else:
            self.package(chart_path, workdir, version, params.app_version)

        package_file = workdir / f"{metadata.name}-{version or metadata.version}.tgz"
        if not package_file.is_file():
            logger.error(f"Package file not found: {package_file}")
            logger.error("Expected file was not created by helm package")
            raise PackagingError(f"Package file not found: {package_file}")

        package_size_mb = package_file.stat().st_size / (1024 * 1024)
        logger.info(f"✓ Package created: {package_file}")
        logger.info(f"✓ Package size: {package_size_mb:.2f} MB")

        return package_file

    def inspect_version(self, chart_file: Path) -> str:
        """
        Read the version embedded in a packaged chart.

        Args:
            chart_file: Path to the .tgz archive

        Returns:
            Chart version

        Raises:
            ChartInspectError: If helm show chart fails
            VersionUnresolvableError: If the output has no version
        """
        logger.info(f"Inspecting chart file: {chart_file}")

        exit_code, stdout, stderr = self.cmd_runner.run_helm(
            "show", "chart", str(chart_file), check=False
        )

        if exit_code != 0:
            if stderr:
                logger.error(f"Stderr:\n{stderr}")
            raise ChartInspectError(f'Unable to inspect Helm chart file: {chart_file}')

        if stderr:
            logger.warning(stderr.rstrip())

        version = parse_inspected_version(stdout)
        if version is None:
            raise VersionUnresolvableError(
                "Unable to parse version information from Helm chart inspection result"
            )

        return version
