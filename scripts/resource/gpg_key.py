#!/usr/bin/env python3
"""
Import a private signing key into an isolated GPG keyring.

helm signs packages with a key from a legacy keyring file, so the imported
secret key is exported to <home>/secring.gpg. Everything lives inside the
keyring home handed in by the caller, which owns its removal.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from common import (
    CommandRunner,
    GpgImportError,
    KeyIdNotFoundError,
    KeyringExportError,
    MissingSigningKeyError,
)
from resource_request import OutParams

logger = logging.getLogger(__name__)

KEY_DATA_FILENAME = "gpg-key.asc"
KEYRING_FILENAME = "secring.gpg"
PASSPHRASE_FILENAME = "passphrase"

KEY_IMPORTED_PATTERN = re.compile(r"^gpg: key (.*?): secret key imported$", re.MULTILINE)


@dataclass(frozen=True)
class SigningContext:
    """Key material prepared for `helm package --sign`."""

    key_file: Path
    key_id: str
    keyring_home: Path
    keyring_file: Path
    passphrase_file: Path | None = None


def parse_key_id(output: str) -> str | None:
    """
    Extract the imported key ID from gpg's diagnostic output.

    Args:
        output: Stderr of gpg --import

    Returns:
        Key ID, or None if no secret key import is reported
    """
    match = KEY_IMPORTED_PATTERN.search(output.replace("\r\n", "\n"))
    return match.group(1) if match else None


def require_signing_key(params: OutParams) -> None:
    """
    Check that a signing key is configured.

    Raises:
        MissingSigningKeyError: If neither key_data nor key_file is set
    """
    if params.key_data is None and params.key_file is None:
        raise MissingSigningKeyError(
            "Either key_data or key_file must be specified when 'sign' is set to true"
        )


def resolve_key_file(params: OutParams, workdir: Path, root: Path) -> Path:
    """
    Locate the signing key, materializing inline key data if given.

    Args:
        params: Put step parameters
        workdir: Packaging workspace to write key_data into
        root: Resource root that key_file is relative to

    Returns:
        Path to the key file

    Raises:
        MissingSigningKeyError: If neither key_data nor key_file is set
    """
    require_signing_key(params)

    if params.key_data is not None:
        key_file = workdir / KEY_DATA_FILENAME
        key_file.write_text(params.key_data, encoding="utf-8")
        key_file.chmod(0o600)
        return key_file

    return root / params.key_file  # type: ignore[operator]


class GpgKeyImporter:
    """Imports signing keys with gpg in batch mode."""

    def __init__(self, cmd_runner: CommandRunner):
        self.cmd_runner = cmd_runner

    def _gpg_args(self, home: Path, passphrase: str | None) -> list[str]:
        args = ["--batch", "--homedir", str(home.resolve())]
        if passphrase is not None:
            args.extend(["--pinentry-mode", "loopback", "--passphrase-fd", "0"])
        return args

    def import_key(self, home: Path, key_file: Path, passphrase: str | None) -> str:
        """
        Import a private key and return its key ID.

        Args:
            home: Isolated GNUPGHOME
            key_file: Armored or binary private key
            passphrase: Key passphrase, streamed to gpg's stdin

        Returns:
            Imported key ID

        Raises:
            GpgImportError: If gpg exits non-zero
            KeyIdNotFoundError: If gpg reports no imported secret key
        """
        logger.info(f"Importing GPG private key: {key_file}")

        exit_code, stdout, stderr = self.cmd_runner.run_gpg(
            *self._gpg_args(home, passphrase),
            "--import",
            str(key_file.resolve()),
            input=passphrase if passphrase is not None else "",
            check=False,
        )

        if stdout:
            logger.debug(f"gpg output:\n{stdout}")

        if exit_code != 0:
            logger.error(f"✗ Importing of GPG key {key_file} failed")
            if stderr:
                logger.error(f"Stderr:\n{stderr}")
            raise GpgImportError(f"gpg import returned exit code {exit_code}")

        key_id = parse_key_id(stderr)
        if key_id is None:
            if stderr:
                logger.error(f"Stderr:\n{stderr}")
            raise KeyIdNotFoundError(
                "Unable to determine key ID after successful import: "
                "no 'secret key imported' line in gpg output"
            )

        logger.info(f"✓ GPG key imported successfully. Key ID: {key_id}")
        return key_id

    def export_keyring(
        self, home: Path, key_id: str, passphrase: str | None
    ) -> tuple[Path, Path | None]:
        """
        Export the imported secret key to a keyring file helm can read.

        Args:
            home: GNUPGHOME the key was imported into
            key_id: Key to export
            passphrase: Key passphrase

        Returns:
            Tuple of (keyring file, passphrase file or None)

        Raises:
            KeyringExportError: If gpg exits non-zero
        """
        keyring_file = home / KEYRING_FILENAME

        exit_code, _stdout, stderr = self.cmd_runner.run_gpg(
            *self._gpg_args(home, passphrase),
            "--output",
            str(keyring_file.resolve()),
            "--export-secret-keys",
            key_id,
            input=passphrase if passphrase is not None else "",
            check=False,
        )

        if exit_code != 0:
            logger.error(f"✗ Failed to export secret key {key_id}")
            if stderr:
                logger.error(f"Stderr:\n{stderr}")
            raise KeyringExportError(f"gpg export returned exit code {exit_code}")

        passphrase_file: Path | None = None
        if passphrase is not None:
            passphrase_file = home / PASSPHRASE_FILENAME
            passphrase_file.write_text(passphrase, encoding="utf-8")
            passphrase_file.chmod(0o600)

        return keyring_file, passphrase_file

    def prepare(
        self, home: Path, key_file: Path, passphrase: str | None
    ) -> SigningContext:
        """Import a key into `home` and export it for helm."""
        key_id = self.import_key(home, key_file, passphrase)
        keyring_file, passphrase_file = self.export_keyring(home, key_id, passphrase)
        return SigningContext(
            key_file=key_file,
            key_id=key_id,
            keyring_home=home,
            keyring_file=keyring_file,
            passphrase_file=passphrase_file,
        )
