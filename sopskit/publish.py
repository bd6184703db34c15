"""Destinations that receive published documents."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping

import requests

from sopskit.log import new_logger

log = new_logger("PUBLISH")

_DEFAULT_VAULT_ADDRESS = "https://127.0.0.1:8200"
_DEFAULT_KV_MOUNT = "secret/"
_TIMEOUT = 60


class DestinationNotImplementedError(NotImplementedError):
    """Raised when a destination does not support an upload mode."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"NotImplementedError: {self.message}"


class Destination(ABC):
    """A place that published files are sent to."""

    @abstractmethod
    def upload(self, file_contents: bytes, file_name: str) -> None:
        """Upload an encrypted file's contents under ``file_name``."""

    @abstractmethod
    def upload_unencrypted(self, data: Mapping[str, Any], file_name: str) -> None:
        """Upload decrypted data under ``file_name``."""

    @abstractmethod
    def path(self, file_name: str) -> str:
        """Return where ``file_name`` ends up at this destination."""


def _vault_token() -> str | None:
    token = os.environ.get("VAULT_TOKEN")
    if token:
        return token
    try:
        stored = (Path.home() / ".vault-token").read_text(encoding="utf-8").strip()
    except (OSError, RuntimeError):
        return None
    return stored or None


class VaultDestination(Destination):
    """A key/value secrets engine of a Vault server."""

    def __init__(
        self,
        vault_address: str = "",
        vault_path: str = "",
        kv_mount_name: str = "",
        kv_version: int = 2,
        session: requests.Session | None = None,
    ) -> None:
        if not vault_path.endswith("/"):
            vault_path += "/"
        if not kv_mount_name:
            kv_mount_name = _DEFAULT_KV_MOUNT
        if not kv_mount_name.endswith("/"):
            kv_mount_name += "/"
        if kv_version not in (1, 2):
            kv_version = 2
        self.vault_address = vault_address
        self.vault_path = vault_path
        self.kv_mount_name = kv_mount_name
        self.kv_version = kv_version
        self._session = session or requests.Session()

    def __repr__(self) -> str:
        return (
            f"VaultDestination(vault_address={self.vault_address!r}, "
            f"vault_path={self.vault_path!r}, kv_mount_name={self.kv_mount_name!r}, "
            f"kv_version={self.kv_version!r})"
        )

    def address(self) -> str:
        """Return the configured address, or the default from ``VAULT_ADDR``."""
        if self.vault_address:
            return self.vault_address
        return os.environ.get("VAULT_ADDR") or _DEFAULT_VAULT_ADDRESS

    def secrets_path(self, file_name: str) -> str:
        """Return the API path of the secret for ``file_name``."""
        if self.kv_version == 1:
            return f"{self.kv_mount_name}{self.vault_path}{file_name}"
        return f"{self.kv_mount_name}data/{self.vault_path}{file_name}"

    def path(self, file_name: str) -> str:
        """Return the full URL of the secret for ``file_name``."""
        return f"{self.address()}/v1/{self.secrets_path(file_name)}"

    def upload(self, file_contents: bytes, file_name: str) -> None:
        """Always raise: Vault only takes decrypted data."""
        raise DestinationNotImplementedError(
            "Vault does not support uploading encrypted sops files directly."
        )

    def _url(self, secrets_path: str) -> str:
        return f"{self.address().rstrip('/')}/v1/{secrets_path}"

    def _headers(self) -> dict[str, str]:
        token = _vault_token()
        return {"X-Vault-Token": token} if token else {}

    def _read(self, secrets_path: str) -> dict[str, Any] | None:
        response = self._session.get(
            self._url(secrets_path), headers=self._headers(), timeout=_TIMEOUT
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        body = response.json()
        return body if isinstance(body, dict) else None

    def upload_unencrypted(self, data: Mapping[str, Any], file_name: str) -> None:
        """Write ``data`` as a new secret version unless it is already stored."""
        secrets_path = self.secrets_path(file_name)
        try:
            existing = self._read(secrets_path)
        except (requests.RequestException, ValueError):
            log.warning(
                "Cannot check if destination secret already exists in %s. New version "
                "will be created even if the data has not been changed.",
                secrets_path,
            )
            existing = None
        if existing is not None:
            secret_data = existing.get("data")
            if isinstance(secret_data, dict) and secret_data.get("data") == dict(data):
                log.info("Secret in %s is already up-to-date.", secrets_path)
                return

        payload: dict[str, Any] = dict(data) if self.kv_version == 1 else {"data": dict(data)}
        response = self._session.put(
            self._url(secrets_path), json=payload, headers=self._headers(), timeout=_TIMEOUT
        )
        response.raise_for_status()