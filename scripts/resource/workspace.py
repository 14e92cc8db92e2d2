#!/usr/bin/env python3
"""
Temporary directories used while publishing a chart.

The packaging workspace holds the packaged archive (and materialized key
data) until the upload is verified. The keyring home holds decrypted key
material. When its block exits, the gpg-agent serving it is stopped and the
directory is removed.
"""

import logging
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from common import ChartError, CommandRunner

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "harbor-chart-"
KEYRING_PREFIX = "concourse-gpg-keyring-"


@contextmanager
def packaging_workspace(temp_root: Path | None = None) -> Iterator[Path]:
    """
    Create a uniquely named directory for packaging output.

    Args:
        temp_root: Parent directory (default: system temp dir)

    Yields:
        Path to the workspace directory
    """
    with tempfile.TemporaryDirectory(prefix=WORKSPACE_PREFIX, dir=temp_root) as tmpd:
        logger.debug(f"Packaging workspace: {tmpd}")
        yield Path(tmpd)
        logger.debug(f"Removing packaging workspace: {tmpd}")


@contextmanager
def keyring_home(
    temp_root: Path | None = None, cmd_runner: CommandRunner | None = None
) -> Iterator[Path]:
    """
    Create an isolated, empty GNUPGHOME and release it on every exit path.

    Args:
        temp_root: Parent directory (default: system temp dir)
        cmd_runner: Runner used to stop the homedir's gpg-agent

    Yields:
        Path to the keyring directory
    """
    home = Path(tempfile.mkdtemp(prefix=KEYRING_PREFIX, dir=temp_root))
    logger.info(f"Using new empty temporary GNUPGHOME: {home}")
    try:
        yield home
    finally:
        if cmd_runner is not None:
            stop_gpg_agent(cmd_runner, home)
        logger.info(f"Removing temporary GNUPGHOME: {home}")
        shutil.rmtree(home, ignore_errors=True)
        if home.exists():
            logger.error(f"✗ Failed to remove temporary GNUPGHOME: {home}")


def stop_gpg_agent(cmd_runner: CommandRunner, home: Path) -> None:
    """
    Stop the gpg-agent that gpg started for a homedir.

    Failures are logged and otherwise ignored.

    Args:
        cmd_runner: Runner for gpgconf
        home: GNUPGHOME the agent serves
    """
    try:
        exit_code, _stdout, stderr = cmd_runner.run_gpgconf(
            "--homedir", str(home.resolve()), "--kill", "gpg-agent", check=False
        )
    except (ChartError, OSError) as e:
        logger.warning(f"⚠️  Failed to stop gpg-agent for {home}: {e}")
        return

    if exit_code != 0:
        logger.warning(f"⚠️  gpgconf --kill gpg-agent returned exit code {exit_code}")
        if stderr:
            logger.warning(f"Stderr:\n{stderr}")
