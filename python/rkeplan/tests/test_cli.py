"""Tests for the rkeplanctl render and plan subcommands."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
import yaml

from conftest import make_cluster, make_machine, make_rke_bootstrap
from rkeplan.cli import plan as plan_cli
from rkeplan.cli import render as render_cli
from rkeplan.models.k8s import NamespacedName, ObjectMeta, Secret
from rkeplan.models.plan import Instruction, Node, NodePlan, node_secret_data
from rkeplan.secrets.bootstrap import SERVER_URL_SETTING, StaticSettings, token_digest
from rkeplan.utils.names import plan_secret_from_machine


def _write_manifests(path: Path) -> None:
    objs = [
        make_cluster(),
        make_rke_bootstrap(),
        make_machine(),
        make_machine(name="m2", phase="Running"),
    ]
    path.write_text(yaml.safe_dump_all([o.to_manifest() for o in objs]), encoding="utf-8")


def test_load_manifests_rejects_unknown_kinds(tmp_path: Path) -> None:
    path = tmp_path / "in.yaml"
    path.write_text("apiVersion: v1\nkind: ConfigMap\nmetadata: {name: x}\n")
    with pytest.raises(ValueError):
        asyncio.run(render_cli.load_manifests(str(path)))


def test_render_desired_per_machine(tmp_path: Path) -> None:
    path = tmp_path / "in.yaml"
    _write_manifests(path)

    objects = asyncio.run(render_cli.load_manifests(str(path)))
    desired = asyncio.run(
        render_cli.render_desired(objects, StaticSettings({SERVER_URL_SETTING: "https://x"}))
    )

    m1 = desired[NamespacedName(namespace="ns1", name="m1")]
    m2 = desired[NamespacedName(namespace="ns1", name="m2")]
    assert [o.kind for o in m1] == [
        "ServiceAccount", "Secret", "Role", "RoleBinding", "ServiceAccount",
    ]
    assert {o.name for o in m2} == {plan_secret_from_machine(make_machine(name="m2"))}


def test_render_main_prints_yaml(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "in.yaml"
    _write_manifests(path)

    render_cli.main(["--file", str(path), "--server-url", "https://x"])

    docs = list(yaml.safe_load_all(capsys.readouterr().out))
    assert len(docs) == 9
    assert docs[0]["metadata"]["labels"]["rke.cattle.io/machine-name"] == "m1"


def test_render_main_exits_on_bad_input(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as info:
        render_cli.main(["--file", str(tmp_path / "missing.yaml")])
    assert info.value.code == 1


def test_plan_digest(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    token_file = tmp_path / "token"
    token_file.write_bytes(b"join-token")

    plan_cli.main(["digest", "--token-file", str(token_file)])

    assert capsys.readouterr().out.strip() == token_digest(b"join-token")


def test_plan_digest_hashes_token_bytes_verbatim(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """A trailing newline is part of the token, as it is for the controller."""
    token_file = tmp_path / "token"
    token_file.write_bytes(b"join-token\n")

    plan_cli.main(["digest", "--token-file", str(token_file)])

    out = capsys.readouterr().out.strip()
    assert out == token_digest(b"join-token\n")
    assert out != token_digest(b"join-token")


def test_plan_digest_rejects_empty_token(tmp_path: Path) -> None:
    token_file = tmp_path / "token"
    token_file.write_bytes(b"")
    with pytest.raises(SystemExit):
        plan_cli.main(["digest", "--token-file", str(token_file)])


def test_plan_inspect(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    node = Node(plan=NodePlan(instructions=[Instruction(name="install")]))
    secret = Secret(
        metadata=ObjectMeta(name="plan-x", namespace="ns1"),
        data=node_secret_data(node),
    )
    path = tmp_path / "secret.json"
    path.write_text(json.dumps(secret.to_manifest()))

    plan_cli.main(["inspect", "--file", str(path)])

    out = json.loads(capsys.readouterr().out)
    assert out["plan"]["instructions"][0]["name"] == "install"
    assert out["inSync"] is False
    assert "appliedPlan" not in out
