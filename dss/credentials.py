"""Credential resolution into command environments.

Credential ids configured on a build wrapper are turned into two kinds of
material: a username/password pair passed to the worker image, and
``KeyMaterial`` (environment variables plus any files they point at) that
every docker invocation for the worker runs with.
"""

from __future__ import annotations

import base64
import json
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from types import TracebackType
from urllib.parse import urlsplit

from dss.config import CredentialEntry, WrapperConfig
from dss.exceptions import CredentialsError
from dss.logging import get_logger
from dss.types import UsernamePassword

logger = get_logger("credentials")


class KeyMaterial:
    """Environment variables backed by temporary files.

    Owned by exactly one worker. ``close`` deletes the backing files and is
    idempotent; reading ``env`` afterwards raises.
    """

    def __init__(self, env: dict[str, str] | None = None, directories: list[Path] | None = None) -> None:
        self._env = dict(env or {})
        self._directories = list(directories or [])
        self._closed = False
        self._lock = threading.Lock()

    @property
    def env(self) -> dict[str, str]:
        with self._lock:
            if self._closed:
                raise CredentialsError("Key material was already released")
            return dict(self._env)

    @property
    def closed(self) -> bool:
        return self._closed

    def plus(self, other: KeyMaterial) -> KeyMaterial:
        """Combine two materials; ``other`` wins on conflicting variables."""
        combined = KeyMaterial({**self._env, **other._env}, self._directories + other._directories)
        self._directories = []
        other._directories = []
        self._closed = True
        other._closed = True
        return combined

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            directories, self._directories = self._directories, []
        for directory in directories:
            shutil.rmtree(directory, ignore_errors=True)

    def __enter__(self) -> KeyMaterial:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class CredentialProvider(ABC):
    """Looks up login material by credential id."""

    @abstractmethod
    def lookup_username_password(self, credentials_id: str) -> UsernamePassword | None:
        """Return the username/password stored under ``credentials_id``.

        Returns:
            UsernamePassword or None if no such credential exists
        """

    @abstractmethod
    def materialize(self, wrapper: WrapperConfig) -> KeyMaterial:
        """Build the docker environment for a wrapper's host and registry."""


class ConfigCredentialProvider(CredentialProvider):
    """Credential provider backed by the ``credentials`` section of the config."""

    def __init__(self, credentials: dict[str, CredentialEntry] | None = None) -> None:
        self._credentials = dict(credentials or {})

    def lookup_username_password(self, credentials_id: str) -> UsernamePassword | None:
        entry = self._credentials.get(credentials_id)
        if entry is None or entry.username is None or entry.password is None:
            return None
        return UsernamePassword(entry.username, entry.password.get_secret_value())

    def materialize(self, wrapper: WrapperConfig) -> KeyMaterial:
        host_material = self._host_material(wrapper.docker_host.credentials_id)
        try:
            registry_material = self._registry_material(
                wrapper.docker_registry.url, wrapper.docker_registry.credentials_id
            )
        except Exception:
            host_material.close()
            raise
        return host_material.plus(registry_material)

    def _entry(self, credentials_id: str) -> CredentialEntry:
        entry = self._credentials.get(credentials_id)
        if entry is None:
            raise CredentialsError(f"Unknown credentials id '{credentials_id}'", credentials_id)
        return entry

    def _host_material(self, credentials_id: str | None) -> KeyMaterial:
        """TLS client certificates for a remote docker daemon."""
        if not credentials_id:
            return KeyMaterial()

        entry = self._entry(credentials_id)
        if not entry.client_certificate or entry.client_key is None:
            raise CredentialsError(
                f"Credentials '{credentials_id}' carry no client certificate", credentials_id
            )

        cert_dir = Path(tempfile.mkdtemp(prefix="dss-certs-"))
        (cert_dir / "cert.pem").write_text(entry.client_certificate)
        key_path = cert_dir / "key.pem"
        key_path.write_text(entry.client_key.get_secret_value())
        key_path.chmod(0o600)
        if entry.server_certificate:
            (cert_dir / "ca.pem").write_text(entry.server_certificate)

        logger.debug(f"Materialized docker host certificates for '{credentials_id}'")
        return KeyMaterial({"DOCKER_TLS_VERIFY": "1", "DOCKER_CERT_PATH": str(cert_dir)}, [cert_dir])

    def _registry_material(self, registry_url: str | None, credentials_id: str | None) -> KeyMaterial:
        """A private DOCKER_CONFIG holding the registry login."""
        if not credentials_id:
            return KeyMaterial()

        entry = self._entry(credentials_id)
        if entry.token is not None:
            auth = entry.token.get_secret_value()
        elif entry.username is not None and entry.password is not None:
            raw = f"{entry.username}:{entry.password.get_secret_value()}"
            auth = base64.b64encode(raw.encode()).decode()
        else:
            raise CredentialsError(
                f"Credentials '{credentials_id}' carry no registry login", credentials_id
            )

        config_dir = Path(tempfile.mkdtemp(prefix="dss-docker-config-"))
        config_file = config_dir / "config.json"
        config_file.write_text(json.dumps({"auths": {registry_server(registry_url): {"auth": auth}}}))
        config_file.chmod(0o600)

        logger.debug(f"Materialized registry login for '{credentials_id}'")
        return KeyMaterial({"DOCKER_CONFIG": str(config_dir)}, [config_dir])


def registry_server(registry_url: str | None) -> str:
    """Return the auth key docker uses for a registry URL.

    Docker Hub is keyed by its v1 index URL; any other registry by host[:port].
    """
    if not registry_url:
        return "https://index.docker.io/v1/"
    parts = urlsplit(registry_url if "://" in registry_url else f"https://{registry_url}")
    return parts.netloc
