"""
rkeplan/secrets/bootstrap.py

Bootstrap payload generation for new machines.

A machine's bootstrap secret carries a join script. The script never embeds
the raw service-account token, only its URL-safe base64 SHA-256 digest
(token_digest), which the node-side agent later presents for verification.

The script needs two cluster-wide settings, read through an injected
SettingsReader rather than a global:
  - server-url: the control-plane URL the agent connects back to (required)
  - cacerts:    the CA bundle the agent should pin (optional)
"""

from __future__ import annotations

import base64
import hashlib
from abc import ABC, abstractmethod
from typing import Mapping, Optional

from rkeplan.models.k8s import Setting
from rkeplan.runtime.store import NotFoundError, ObjectCache

SERVER_URL_SETTING = "server-url"
CA_CERTS_SETTING = "cacerts"
INSTALL_SCRIPT_PATH = "/assets/system-agent-install.sh"


class BootstrapConfigError(ValueError):
    """Raised when cluster settings needed for a bootstrap payload are missing."""


def token_digest(token: bytes) -> str:
    """Return URL-safe base64 (padded) of SHA-256 over the raw token bytes."""
    return base64.urlsafe_b64encode(hashlib.sha256(token).digest()).decode("ascii")


class SettingsReader(ABC):
    """Read-only access to cluster-wide settings."""

    @abstractmethod
    async def get(self, name: str) -> Optional[str]:
        """Return the setting's effective value, or None if unset."""


class StaticSettings(SettingsReader):
    """Settings from a fixed mapping; used by the CLI and in tests."""

    def __init__(self, values: Mapping[str, str]) -> None:
        self._values = dict(values)

    async def get(self, name: str) -> Optional[str]:
        return self._values.get(name) or None


class CachedSettings(SettingsReader):
    """Settings read from management Setting objects in the object cache."""

    def __init__(self, cache: ObjectCache) -> None:
        self._cache = cache

    async def get(self, name: str) -> Optional[str]:
        try:
            setting = await self._cache.get(Setting, "", name)
        except NotFoundError:
            return None
        return setting.effective_value


class BootstrapContentProvider(ABC):
    """Turns a token digest into the opaque bootstrap payload bytes."""

    @abstractmethod
    async def render(self, token_digest: str) -> bytes:
        """Return the payload for a machine whose token has this digest."""


class ScriptBootstrapProvider(BootstrapContentProvider):
    """
    Renders a POSIX shell script that downloads and runs the node agent
    installer, pointing it at server-url with the token digest. When cacerts
    is set, its SHA-256 is passed as --ca-checksum.
    """

    def __init__(self, settings: SettingsReader) -> None:
        self._settings = settings

    async def render(self, token_digest: str) -> bytes:
        server_url = (await self._settings.get(SERVER_URL_SETTING) or "").rstrip("/")
        if not server_url:
            raise BootstrapConfigError(
                f"Setting '{SERVER_URL_SETTING}' is not set; cannot build bootstrap script."
            )
        if not token_digest:
            raise BootstrapConfigError("Empty token digest for bootstrap script.")

        ca_certs = await self._settings.get(CA_CERTS_SETTING)
        ca_args = ""
        if ca_certs:
            checksum = hashlib.sha256(ca_certs.encode("utf-8")).hexdigest()
            ca_args = f" --ca-checksum {checksum}"

        script = (
            "#!/usr/bin/env sh\n"
            "set -e\n"
            f"curl -fL {server_url}{INSTALL_SCRIPT_PATH} | "
            f"sh -s - --server {server_url} --token {token_digest}{ca_args}\n"
        )
        return script.encode("utf-8")
