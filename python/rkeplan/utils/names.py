"""
rkeplan/utils/names.py

Deterministic object naming. Every name here is a pure function of its
inputs, which is what lets repeated reconciliations of the same machine
produce the same object identities.
"""

from __future__ import annotations

import hashlib

from rkeplan.models.capi import Machine

MAX_NAME_LENGTH = 63
PLAN_PREFIX = "plan"
PLAN_HASH_LENGTH = 32


def hex_digest(value: str, length: int) -> str:
    """Return the first `length` hex chars of SHA-256 over value."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def safe_concat_name(*parts: str) -> str:
    """
    Join parts with '-' into a DNS-label-safe name.

    Names shorter than 64 chars are returned as is. Longer ones are cut and
    suffixed with a short hash of the full name, so distinct long inputs stay
    distinct; if the cut would end on a character a label cannot end with, one
    more char is dropped and the hash gets one more char.
    """
    full = "-".join(parts)
    if len(full) <= MAX_NAME_LENGTH:
        return full

    digest = hex_digest(full, 6)
    last = full[56]
    if last.isdigit() or ("a" <= last <= "z"):
        return f"{full[:57]}-{digest[:5]}"
    return f"{full[:56]}-{digest}"


def plan_secret_from_machine(machine: Machine) -> str:
    """
    Name shared by a machine's plan-channel ServiceAccount, Secret, Role and
    RoleBinding: 'plan-' plus a SHA-256 prefix of the machine name.
    """
    return f"{PLAN_PREFIX}-{hex_digest(machine.name, PLAN_HASH_LENGTH)}"


def bootstrap_service_account_name(machine: Machine) -> str:
    """Name of the principal a new machine uses to fetch its bootstrap payload."""
    return safe_concat_name(machine.name, "machine", "bootstrap")
