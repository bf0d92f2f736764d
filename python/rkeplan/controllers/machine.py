"""
rkeplan/controllers/machine.py

The machine controller. For every Machine of a managed (RKECluster) cluster
it declares:

  1) the plan channel: a ServiceAccount, Secret, Role and RoleBinding sharing
     one deterministic name, where the Role can only watch/get/update/list
     that single Secret, so a node can read and report on its own plan and
     nothing else;
  2) the bootstrap channel, while the machine is still joining: a
     ServiceAccount whose token secret (attached asynchronously by Kubernetes)
     is turned into a bootstrap Secret holding the join script, and a status
     update pointing the machine's RKEBootstrap at that Secret.

on_change() returns the full desired object set; the apply engine converges
it. The only direct write is the RKEBootstrap status update, issued only
when the recorded secret name differs.

The ServiceAccount trigger (machine_keys_for_service_account) re-queues the
owning machine whenever one of its ServiceAccounts changes, which is how the
controller notices the token secret appearing.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple, Type

from rkeplan.models.capi import ClusterSpec, Cluster, Machine, MachinePhase, MachineStatus
from rkeplan.models.k8s import (
    RBAC_GROUP,
    KubeObject,
    NamespacedName,
    ObjectMeta,
    PolicyRule,
    Role,
    RoleBinding,
    RoleRef,
    Secret,
    ServiceAccount,
    Subject,
)
from rkeplan.models.rke import (
    RKE_API_VERSION,
    RKE_BOOTSTRAP_KIND,
    RKE_CLUSTER_KIND,
    RKE_GROUP,
    RKEBootstrap,
)
from rkeplan.models.settings import ControllerSettings
from rkeplan.runtime.apply import ApplyEngine
from rkeplan.runtime.controller import GeneratingController
from rkeplan.runtime.store import InMemoryStore, NotFoundError, ObjectCache, ObjectClient
from rkeplan.secrets.bootstrap import (
    BootstrapContentProvider,
    ScriptBootstrapProvider,
    SettingsReader,
    token_digest,
)
from rkeplan.utils.names import bootstrap_service_account_name, plan_secret_from_machine

logger = logging.getLogger(__name__)

MACHINE_NAME_LABEL = "rke.cattle.io/machine-name"
CLUSTER_NAME_LABEL = "rke.cattle.io/cluster-name"
ROLE_LABEL = "rke.cattle.io/service-account-role"
PLAN_SECRET_LABEL = "rke.cattle.io/plan-secret-name"
ROLE_BOOTSTRAP = "bootstrap"
ROLE_PLAN = "plan"

PLAN_SECRET_TYPE = "rke.cattle.io/machine-plan"
BOOTSTRAP_SECRET_TYPE = "rke.cattle.io/bootstrap"
BOOTSTRAP_VALUE_KEY = "value"
TOKEN_KEY = "token"

PLAN_VERBS = ["watch", "get", "update", "list"]

BOOTSTRAP_PHASES = frozenset(
    {
        MachinePhase.PENDING.value,
        MachinePhase.DELETING.value,
        MachinePhase.FAILED.value,
        MachinePhase.PROVISIONING.value,
    }
)

SET_ID = "rke-machine"
TRIGGER_NAME = "rke-machine-trigger"
OWNED_TRIGGER_NAME = "rke-machine-owned"

# Kinds the apply engine writes; events on them re-queue their owner.
OWNED_TYPES: List[Type[KubeObject]] = [ServiceAccount, Secret, Role, RoleBinding]


class MalformedCredentialError(ValueError):
    """Raised when a principal's credential-secrets carry no token."""


def is_rke_cluster(spec: ClusterSpec) -> bool:
    """True iff the cluster's infrastructure is an RKECluster of our API group."""
    ref = spec.infrastructure_ref
    if ref is None or not ref.api_version:
        return False
    group = ref.api_version.rsplit("/", 1)[0] if "/" in ref.api_version else ""
    return group == RKE_GROUP and ref.kind == RKE_CLUSTER_KIND


def machine_keys_for_service_account(
    namespace: str, name: str, obj: Optional[KubeObject]
) -> List[NamespacedName]:
    """
    Map a ServiceAccount event to the machine that owns it, using the
    machine-name label. Objects without the label map to nothing.
    """
    if not isinstance(obj, ServiceAccount):
        return []
    machine_name = obj.labels.get(MACHINE_NAME_LABEL)
    if not machine_name:
        return []
    return [NamespacedName(namespace=obj.namespace, name=machine_name)]


class MachineHandler:
    """
    Computes the desired plan/bootstrap objects for one Machine.

    Args:
        cache: Read access to Clusters, ServiceAccounts, Secrets and RKEBootstraps.
        client: Write access, used only for RKEBootstrap status updates.
        bootstrap_content: Renders the bootstrap payload from a token digest.
    """

    def __init__(
        self,
        cache: ObjectCache,
        client: ObjectClient,
        bootstrap_content: BootstrapContentProvider,
    ) -> None:
        self._cache = cache
        self._client = client
        self._bootstrap_content = bootstrap_content

    async def get_bootstrap_secret(self, namespace: str, name: str) -> Optional[Secret]:
        """
        Build the bootstrap Secret for the ServiceAccount namespace/name.

        Returns None while the ServiceAccount, or its token secret reference,
        does not exist yet.

        Raises:
            MalformedCredentialError: If referenced secrets exist but none has a token.
            StoreError: On any lookup failure other than the ServiceAccount being missing.
        """
        try:
            sa = await self._cache.get(ServiceAccount, namespace, name)
        except NotFoundError:
            return None

        refs = sa.secrets or []
        if not refs:
            return None

        for ref in refs:
            secret = await self._cache.get(Secret, sa.namespace, ref.name)
            token = secret.get_bytes(TOKEN_KEY)
            if token is None:
                continue

            data = await self._bootstrap_content.render(token_digest(token))
            return Secret(
                metadata=ObjectMeta(name=name, namespace=namespace),
                type=BOOTSTRAP_SECRET_TYPE,
                data=Secret.encode_data({BOOTSTRAP_VALUE_KEY: data}),
            )

        raise MalformedCredentialError(
            f"ServiceAccount {namespace}/{name} has {len(refs)} secret(s) and none "
            f"carries a '{TOKEN_KEY}'"
        )

    def assign_plan_secret(self, machine: Machine) -> List[KubeObject]:
        """Return the plan channel [ServiceAccount, Secret, Role, RoleBinding]."""
        secret_name = plan_secret_from_machine(machine)
        namespace = machine.namespace

        sa = ServiceAccount(
            metadata=ObjectMeta(
                name=secret_name,
                namespace=namespace,
                labels={
                    CLUSTER_NAME_LABEL: machine.spec.cluster_name,
                    MACHINE_NAME_LABEL: machine.name,
                    ROLE_LABEL: ROLE_PLAN,
                    PLAN_SECRET_LABEL: secret_name,
                },
            )
        )
        secret = Secret(
            metadata=ObjectMeta(
                name=secret_name,
                namespace=namespace,
                labels={MACHINE_NAME_LABEL: machine.name},
            ),
            type=PLAN_SECRET_TYPE,
        )
        role = Role(
            metadata=ObjectMeta(name=secret_name, namespace=namespace),
            rules=[
                PolicyRule(
                    verbs=list(PLAN_VERBS),
                    api_groups=[""],
                    resources=["secrets"],
                    resource_names=[secret_name],
                )
            ],
        )
        role_binding = RoleBinding(
            metadata=ObjectMeta(name=secret_name, namespace=namespace),
            subjects=[
                Subject(kind=ServiceAccount.KIND, name=sa.name, namespace=sa.namespace)
            ],
            role_ref=RoleRef(api_group=RBAC_GROUP, kind=Role.KIND, name=secret_name),
        )
        return [sa, secret, role, role_binding]

    async def assign_bootstrap_secret(
        self, machine: Machine
    ) -> Tuple[Optional[Secret], List[KubeObject]]:
        """
        Return (bootstrap secret or None, [bootstrap ServiceAccount]) for a
        machine that uses RKEBootstrap and is still joining, or (None, [])
        otherwise. Points the RKEBootstrap at the secret when it is resolved.
        """
        config_ref = machine.spec.bootstrap.config_ref
        if (
            config_ref is None
            or config_ref.api_version != RKE_API_VERSION
            or config_ref.kind != RKE_BOOTSTRAP_KIND
        ):
            return None, []

        if (machine.status.phase or "") not in BOOTSTRAP_PHASES:
            return None, []

        sa = ServiceAccount(
            metadata=ObjectMeta(
                name=bootstrap_service_account_name(machine),
                namespace=machine.namespace,
                labels={
                    MACHINE_NAME_LABEL: machine.name,
                    ROLE_LABEL: ROLE_BOOTSTRAP,
                },
            )
        )

        bootstrap_secret = await self.get_bootstrap_secret(sa.namespace, sa.name)
        if bootstrap_secret is not None:
            await self._point_bootstrap_at(machine, config_ref.name, bootstrap_secret.name)

        return bootstrap_secret, [sa]

    async def _point_bootstrap_at(
        self, machine: Machine, bootstrap_name: str, secret_name: str
    ) -> None:
        rke_bootstrap = await self._cache.get(RKEBootstrap, machine.namespace, bootstrap_name)
        if rke_bootstrap.status.data_secret_name == secret_name:
            return

        updated = rke_bootstrap.model_copy(deep=True)
        updated.status.data_secret_name = secret_name
        updated.status.ready = True
        await self._client.update_status(updated)
        logger.info(
            "RKEBootstrap %s/%s now served by secret %s",
            machine.namespace,
            bootstrap_name,
            secret_name,
        )

    async def on_change(
        self, machine: Machine, status: MachineStatus
    ) -> Tuple[List[KubeObject], MachineStatus]:
        """
        Compute the desired objects for machine. Machines of clusters that
        are not RKEClusters yield an empty set. The status is returned as is.
        """
        cluster = await self._cache.get(Cluster, machine.namespace, machine.spec.cluster_name)
        if not is_rke_cluster(cluster.spec):
            return [], status

        result: List[KubeObject] = []
        result.extend(self.assign_plan_secret(machine))

        bootstrap_secret, objs = await self.assign_bootstrap_secret(machine)
        if bootstrap_secret is not None:
            result.append(bootstrap_secret)
        result.extend(objs)

        return result, status


def register(
    cache: InMemoryStore,
    client: ObjectClient,
    settings_reader: SettingsReader,
    settings: ControllerSettings,
) -> GeneratingController[Machine]:
    """
    Wire the machine handler into a generating controller: Machine events
    queue the machine, ServiceAccount events queue the labelled owner, events
    on any applied object (edits, deletions) queue the owner recorded on it,
    and desired objects are converged by an apply engine under set id
    'rke-machine'.
    """
    handler = MachineHandler(
        cache=cache,
        client=client,
        bootstrap_content=ScriptBootstrapProvider(settings_reader),
    )
    engine = ApplyEngine(client=client, cache=cache, set_id=SET_ID)
    controller: GeneratingController[Machine] = GeneratingController(
        name=SET_ID,
        primary_type=Machine,
        cache=cache,
        client=client,
        engine=engine,
        handler=handler.on_change,
        settings=settings,
    )
    controller.watch_related(ServiceAccount, TRIGGER_NAME, machine_keys_for_service_account)
    for owned_type in OWNED_TYPES:
        controller.watch_related(owned_type, OWNED_TRIGGER_NAME, engine.owners)
    return controller
