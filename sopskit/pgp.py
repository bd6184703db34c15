"""PGP master keys that protect the data key by running the GnuPG binary."""

from __future__ import annotations

import os
import shutil
import stat
import subprocess
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Sequence

from sopskit.document import MasterKey as BaseMasterKey
from sopskit.log import new_logger

KEY_TYPE_IDENTIFIER = "pgp"
"""Identifier of the PGP master key type."""

SOPS_GPG_EXEC_ENV = "SOPS_GPG_EXEC"
"""Environment variable that replaces the GnuPG binary used."""

PGP_TTL = timedelta(hours=24 * 30 * 6)
"""Age after which a PGP master key needs rotation."""

_GNUPGHOME_PERMISSIONS = 0o700

log = new_logger("PGP")


class PGPError(Exception):
    """Raised when a GnuPG home or a PGP operation fails."""


@dataclass(frozen=True)
class _GpgResult:
    stdout: bytes
    stderr: bytes
    error: str | None


def gpg_binary() -> str:
    """Return the GnuPG binary to run, honouring ``SOPS_GPG_EXEC``."""
    return os.environ.get(SOPS_GPG_EXEC_ENV) or "gpg"


def _gpg_exec(home_dir: str, args: Sequence[str], stdin: bytes) -> _GpgResult:
    command = [gpg_binary()]
    if home_dir:
        command += ["--homedir", home_dir]
    command += list(args)
    try:
        completed = subprocess.run(command, input=stdin, capture_output=True, check=False)
    except OSError as err:
        return _GpgResult(b"", b"", str(err))
    error = None if completed.returncode == 0 else f"exit status {completed.returncode}"
    return _GpgResult(completed.stdout, completed.stderr, error)


def gnupg_home(custom_path: str = "") -> str:
    """Return the GnuPG home: ``custom_path``, ``$GNUPGHOME`` or ``~/.gnupg``."""
    if custom_path:
        return custom_path
    env_dir = os.environ.get("GNUPGHOME")
    if env_dir:
        return env_dir
    try:
        home = str(Path.home())
    except (RuntimeError, KeyError):
        home = os.environ.get("HOME", "")
    return os.path.join(home, ".gnupg")


def shorten_fingerprint(fingerprint: str) -> str:
    """Return the 16 hex digit short ID of ``fingerprint``, keeping a trailing ``!``."""
    offset = len(fingerprint) - 16
    if fingerprint.endswith("!"):
        offset -= 1
    if offset > 0:
        fingerprint = fingerprint[offset:]
    return fingerprint


@dataclass
class MasterKey(BaseMasterKey):
    """A PGP key used to encrypt and decrypt the document's data key."""

    fingerprint: str
    encrypted_key: str = ""
    creation_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    gnupg_home_dir: str = ""

    def encrypt(self, data_key: bytes) -> None:
        """Encrypt ``data_key`` with the key matching the fingerprint."""
        try:
            self._encrypt_with_gnupg(data_key)
        except PGPError as err:
            log.info("Encryption failed (fingerprint=%s)", self.fingerprint)
            raise PGPError(
                f"could not encrypt data key with PGP key: GnuPG binary error: {err}"
            ) from err
        log.info("Encryption succeeded (fingerprint=%s)", self.fingerprint)

    def _encrypt_with_gnupg(self, data_key: bytes) -> None:
        args = [
            "--no-default-recipient",
            "--yes",
            "--encrypt",
            "-a",
            "-r",
            self.fingerprint,
            "--trusted-key",
            shorten_fingerprint(self.fingerprint),
            "--no-encrypt-to",
        ]
        result = _gpg_exec(self.gnupg_home_dir, args, data_key)
        if result.error is not None:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise PGPError(f"failed to encrypt sops data key with pgp: {stderr}")
        self.set_encrypted_data_key(result.stdout.strip())

    def encrypt_if_needed(self, data_key: bytes) -> None:
        """Encrypt ``data_key`` unless an encrypted key is already held."""
        if not self.encrypted_key:
            self.encrypt(data_key)

    def encrypted_data_key(self) -> bytes:
        """Return the encrypted data key held by this key."""
        return self.encrypted_key.encode("utf-8")

    def set_encrypted_data_key(self, enc: bytes) -> None:
        """Store ``enc`` as the encrypted data key."""
        self.encrypted_key = bytes(enc).decode("utf-8", errors="replace")

    def decrypt(self) -> bytes:
        """Return the data key decrypted from the stored encrypted key."""
        try:
            data_key = self._decrypt_with_gnupg()
        except PGPError as err:
            log.info("Decryption failed (fingerprint=%s)", self.fingerprint)
            raise PGPError(
                f"could not decrypt data key with PGP key: GnuPG binary error: {err}"
            ) from err
        log.info("Decryption succeeded (fingerprint=%s)", self.fingerprint)
        return data_key

    def _decrypt_with_gnupg(self) -> bytes:
        result = _gpg_exec(self.gnupg_home_dir, ["-d"], self.encrypted_key.encode("utf-8"))
        if result.error is not None:
            stderr = result.stderr.decode("utf-8", errors="replace").strip()
            raise PGPError(f"failed to decrypt sops data key with pgp: {stderr}")
        if not result.stdout:
            # Older GnuPG versions may silently drop AEAD packets they cannot read.
            raise PGPError("failed to decrypt sops data key with pgp: zero bytes returned")
        return result.stdout

    def needs_rotation(self) -> bool:
        """Return whether the key is older than the rotation period."""
        created = self.creation_date
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return datetime.now(timezone.utc) - created > PGP_TTL

    def to_string(self) -> str:
        """Return the key's fingerprint."""
        return self.fingerprint

    def __str__(self) -> str:
        return self.to_string()

    def to_map(self) -> dict[str, Any]:
        """Return the key as a mapping for serialisation."""
        created = self.creation_date
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return {
            "fp": self.fingerprint,
            "created_at": created.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "enc": self.encrypted_key,
        }

    def type_to_identifier(self) -> str:
        """Return ``"pgp"``."""
        return KEY_TYPE_IDENTIFIER


def new_master_key_from_fingerprint(fingerprint: str) -> MasterKey:
    """Create a key for ``fingerprint`` with spaces removed."""
    return MasterKey(fingerprint=fingerprint.replace(" ", ""))


def master_keys_from_fingerprint_string(fingerprint: str) -> list[MasterKey]:
    """Create one key per entry of a comma separated fingerprint list."""
    if not fingerprint:
        return []
    return [new_master_key_from_fingerprint(part) for part in fingerprint.split(",")]


@dataclass(frozen=True)
class GnuPGHome:
    """An absolute path to a GnuPG home directory."""

    path: str

    def __str__(self) -> str:
        return self.path

    def __fspath__(self) -> str:
        return self.path

    def __enter__(self) -> GnuPGHome:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cleanup()

    def validate(self) -> None:
        """Raise :class:`PGPError` unless the path is a usable GnuPG home."""
        if not self.path:
            raise PGPError("empty GNUPGHOME path")
        if not os.path.isabs(self.path):
            raise PGPError("GNUPGHOME must be an absolute path")
        try:
            info = os.lstat(self.path)
        except FileNotFoundError as err:
            raise PGPError("GNUPGHOME does not exist") from err
        except OSError as err:
            raise PGPError(f"cannot stat GNUPGHOME: {err}") from err
        if not stat.S_ISDIR(info.st_mode):
            raise PGPError("GNUPGHOME is not a directory")
        perm = stat.S_IMODE(info.st_mode)
        if perm != _GNUPGHOME_PERMISSIONS:
            raise PGPError(
                f"GNUPGHOME has invalid permissions: got {perm:#o} "
                f"wanted {_GNUPGHOME_PERMISSIONS:#o}"
            )

    def import_key(self, armored_key: bytes) -> None:
        """Import armoured key data into this keyring."""
        try:
            self.validate()
        except PGPError as err:
            raise PGPError(f"cannot import armored key data into GnuPG keyring: {err}") from err
        result = _gpg_exec(self.path, ["--batch", "--import"], bytes(armored_key))
        if result.error is None:
            return
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        message = "failed to import armored key data into GnuPG keyring"
        if stderr:
            if result.error:
                message += f" ({result.error})"
            message += f": {stderr}"
        elif result.error:
            message += f": {result.error}"
        raise PGPError(message)

    def import_file(self, path: str | os.PathLike[str]) -> None:
        """Import the armoured key file at ``path`` into this keyring."""
        try:
            data = Path(path).read_bytes()
        except OSError as err:
            raise PGPError(f"cannot read armored key data from file: {err}") from err
        self.import_key(data)

    def cleanup(self) -> None:
        """Delete the directory after validating it."""
        self.validate()
        shutil.rmtree(self.path)

    def apply_to_master_key(self, key: MasterKey) -> None:
        """Point ``key`` at this home if it is valid; otherwise leave it alone."""
        try:
            self.validate()
        except PGPError:
            return
        key.gnupg_home_dir = self.path


def new_gnupg_home() -> GnuPGHome:
    """Create a new GnuPG home in a temporary directory; the caller removes it."""
    try:
        path = tempfile.mkdtemp(prefix="sops-gnupghome-")
    except OSError as err:
        raise PGPError(f"failed to create new GnuPG home: {err}") from err
    os.chmod(path, _GNUPGHOME_PERMISSIONS)
    return GnuPGHome(path)