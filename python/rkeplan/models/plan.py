"""
rkeplan/models/plan.py

Defines the plan-channel payload contract shared by the planner (which writes
a node's desired NodePlan) and the node agent (which applies it and reports
back):

 - Plan:        node id => Node, machine name => Machine snapshot, cluster snapshot
 - Node:        desired plan, last applied plan, in-sync flag
 - NodePlan:    ordered Files to write, then ordered Instructions to run
 - Instruction: one step (name, image, env, args, command)
 - File:        one file (base64 content, logical name, directory path)
 - JoinTokens:  server/agent join tokens carried alongside a plan

JSON output omits empty fields, matching the Go "omitempty" encoding the node
agent expects.
"""

from __future__ import annotations

import base64
import json
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Type, TypeVar, Union

from pydantic import Field

from rkeplan.models.capi import Machine
from rkeplan.models.k8s import K8sModel, Secret
from rkeplan.models.rke import RKECluster

PLAN_KEY = "plan"
APPLIED_PLAN_KEY = "appliedPlan"

P = TypeVar("P", bound="PlanModel")


class PlanModel(K8sModel):
    """Base for plan types: omitempty-style JSON in and out."""

    def to_json(self) -> str:
        return json.dumps(
            self.model_dump(by_alias=True, exclude_defaults=True, mode="json"),
            sort_keys=True,
        )

    @classmethod
    def from_json(cls: Type[P], raw: Union[str, bytes]) -> P:
        return cls.model_validate_json(raw)


class Instruction(PlanModel):
    name: str = ""
    image: str = ""
    env: List[str] = Field(default_factory=list)
    args: List[str] = Field(default_factory=list)
    command: str = ""


class File(PlanModel):
    """
    A file to place on the node, e.g. name `ca.pem`, path `/etc/kubernetes/ssl`.
    Content is base64 encoded.
    """

    content: str = ""
    name: str = ""
    path: str = ""

    @property
    def target_path(self) -> PurePosixPath:
        return PurePosixPath(self.path) / self.name

    def decoded_content(self) -> bytes:
        return base64.b64decode(self.content)


class NodePlan(PlanModel):
    files: List[File] = Field(default_factory=list)
    instructions: List[Instruction] = Field(default_factory=list)


class Node(PlanModel):
    plan: NodePlan = Field(default_factory=NodePlan)
    applied_plan: Optional[NodePlan] = None
    in_sync: bool = False

    def recompute_in_sync(self) -> bool:
        """Set and return in_sync: True iff the applied plan equals the plan."""
        self.in_sync = self.applied_plan is not None and self.applied_plan == self.plan
        return self.in_sync

    def report_applied(self, applied: NodePlan) -> bool:
        """
        Record what the node agent just applied, taking a copy so later edits
        to the caller's object cannot leak in, and recompute in_sync.
        """
        self.applied_plan = applied.model_copy(deep=True)
        return self.recompute_in_sync()


class JoinTokens(PlanModel):
    server_token: str = ""
    agent_token: str = ""


class Plan(PlanModel):
    nodes: Dict[str, Node] = Field(default_factory=dict)
    machines: Dict[str, Machine] = Field(default_factory=dict)
    cluster: Optional[RKECluster] = None

    def out_of_sync(self) -> List[str]:
        """Return the ids of nodes that have not converged, sorted."""
        return sorted(node_id for node_id, node in self.nodes.items() if not node.in_sync)


def node_from_secret(secret: Secret) -> Node:
    """
    Decode a plan-channel secret into a Node.

    A secret the planner has not written yet decodes to an empty plan. The
    in_sync flag is recomputed rather than trusted from the payload.

    Raises:
        pydantic.ValidationError: If either payload is not a valid NodePlan.
    """
    raw_plan = secret.get_bytes(PLAN_KEY)
    raw_applied = secret.get_bytes(APPLIED_PLAN_KEY)
    node = Node(
        plan=NodePlan.from_json(raw_plan) if raw_plan else NodePlan(),
        applied_plan=NodePlan.from_json(raw_applied) if raw_applied else None,
    )
    node.recompute_in_sync()
    return node


def node_secret_data(node: Node) -> Dict[str, str]:
    """Encode a Node into plan-channel secret data (base64 values)."""
    raw = {PLAN_KEY: node.plan.to_json().encode("utf-8")}
    if node.applied_plan is not None:
        raw[APPLIED_PLAN_KEY] = node.applied_plan.to_json().encode("utf-8")
    return Secret.encode_data(raw)
