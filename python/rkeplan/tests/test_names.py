"""Unit tests for deterministic object naming."""
from __future__ import annotations

import hashlib

from conftest import make_machine
from rkeplan.utils.names import (
    MAX_NAME_LENGTH,
    bootstrap_service_account_name,
    plan_secret_from_machine,
    safe_concat_name,
)


def test_plan_name_is_hash_of_machine_name() -> None:
    """The plan name is 'plan-' plus 32 hex chars of SHA-256(machine name)."""
    expected = "plan-" + hashlib.sha256(b"m1").hexdigest()[:32]
    assert plan_secret_from_machine(make_machine(name="m1")) == expected


def test_plan_name_is_deterministic() -> None:
    first = plan_secret_from_machine(make_machine(name="worker-0"))
    second = plan_secret_from_machine(make_machine(name="worker-0", namespace="other"))
    assert first == second
    assert len(first) == len("plan-") + 32


def test_distinct_machines_get_distinct_plan_names() -> None:
    names = {plan_secret_from_machine(make_machine(name=f"m{i}")) for i in range(50)}
    assert len(names) == 50


def test_bootstrap_name_for_short_machine_name() -> None:
    assert bootstrap_service_account_name(make_machine(name="m1")) == "m1-machine-bootstrap"


def test_safe_concat_name_short_input_unchanged() -> None:
    assert safe_concat_name("a", "b", "c") == "a-b-c"
    assert safe_concat_name("x" * 63) == "x" * 63


def test_safe_concat_name_truncates_long_input() -> None:
    """Long names are cut to 63 chars with a hash suffix of the full name."""
    full = "a" * 70
    digest = hashlib.sha256(full.encode()).hexdigest()

    result = safe_concat_name(full)

    assert len(result) == MAX_NAME_LENGTH
    assert result == "a" * 57 + "-" + digest[:5]


def test_safe_concat_name_drops_trailing_separator() -> None:
    """A cut landing on a non-alphanumeric char keeps one char less."""
    full = "a" * 56 + "-" + "b" * 20
    digest = hashlib.sha256(full.encode()).hexdigest()

    result = safe_concat_name(full)

    assert len(result) == MAX_NAME_LENGTH
    assert result == "a" * 56 + "-" + digest[:6]


def test_long_machine_names_stay_distinct() -> None:
    base = "m" * 60
    a = bootstrap_service_account_name(make_machine(name=base + "a"))
    b = bootstrap_service_account_name(make_machine(name=base + "b"))
    assert a != b
    assert len(a) == len(b) == MAX_NAME_LENGTH
