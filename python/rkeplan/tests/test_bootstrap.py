"""Unit tests for bootstrap payload rendering and settings readers."""
from __future__ import annotations

import asyncio
import base64
import hashlib

import pytest

from rkeplan.models.k8s import ObjectMeta, Setting
from rkeplan.runtime.store import InMemoryStore
from rkeplan.secrets.bootstrap import (
    CA_CERTS_SETTING,
    SERVER_URL_SETTING,
    BootstrapConfigError,
    CachedSettings,
    ScriptBootstrapProvider,
    StaticSettings,
    token_digest,
)

SERVER = "https://rancher.example.com"


def test_token_digest_is_urlsafe_sha256() -> None:
    expected = base64.urlsafe_b64encode(hashlib.sha256(b"abc").digest()).decode()
    assert token_digest(b"abc") == expected
    assert token_digest(b"abc").endswith("=")
    assert "+" not in token_digest(b"\xff" * 40) and "/" not in token_digest(b"\xff" * 40)


def test_token_digest_changes_with_any_byte() -> None:
    assert token_digest(b"join-token") != token_digest(b"join-tokeo")


def test_script_contents() -> None:
    provider = ScriptBootstrapProvider(StaticSettings({SERVER_URL_SETTING: SERVER + "/"}))

    script = asyncio.run(provider.render("DIGEST=")).decode()

    assert script == (
        "#!/usr/bin/env sh\n"
        "set -e\n"
        f"curl -fL {SERVER}/assets/system-agent-install.sh | "
        f"sh -s - --server {SERVER} --token DIGEST=\n"
    )


def test_script_pins_ca_checksum() -> None:
    pem = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"
    provider = ScriptBootstrapProvider(
        StaticSettings({SERVER_URL_SETTING: SERVER, CA_CERTS_SETTING: pem})
    )

    script = asyncio.run(provider.render("DIGEST=")).decode()

    checksum = hashlib.sha256(pem.encode()).hexdigest()
    assert script.rstrip("\n").endswith(f"--token DIGEST= --ca-checksum {checksum}")


@pytest.mark.parametrize("values", [{}, {SERVER_URL_SETTING: ""}])
def test_script_requires_server_url(values: dict) -> None:
    provider = ScriptBootstrapProvider(StaticSettings(values))
    with pytest.raises(BootstrapConfigError):
        asyncio.run(provider.render("DIGEST="))


def test_script_rejects_empty_digest() -> None:
    provider = ScriptBootstrapProvider(StaticSettings({SERVER_URL_SETTING: SERVER}))
    with pytest.raises(BootstrapConfigError):
        asyncio.run(provider.render(""))


def test_cached_settings_prefers_value_over_default() -> None:
    store = InMemoryStore()
    store.put(Setting(metadata=ObjectMeta(name=SERVER_URL_SETTING), default="https://default"))
    store.put(Setting(metadata=ObjectMeta(name=CA_CERTS_SETTING), value="pem", default="x"))
    reader = CachedSettings(store)

    assert asyncio.run(reader.get(SERVER_URL_SETTING)) == "https://default"
    assert asyncio.run(reader.get(CA_CERTS_SETTING)) == "pem"
    assert asyncio.run(reader.get("missing")) is None


def test_cached_settings_feed_the_script() -> None:
    store = InMemoryStore()
    store.put(Setting(metadata=ObjectMeta(name=SERVER_URL_SETTING), value=SERVER))
    provider = ScriptBootstrapProvider(CachedSettings(store))

    script = asyncio.run(provider.render("DIGEST=")).decode()

    assert f"--server {SERVER} " in script
