"""Creating provisioning clusters and waiting for them.

Both node-driver clusters (machines created by Rancher in a cloud) and custom clusters (nodes
register themselves with a join command) are `provisioning.cattle.io/v1` Cluster objects. Custom
clusters just have no machine pools.
"""

import dataclasses
import logging
import typing as tp

from kubernetes.client import exceptions as k8s_exceptions

from rancher_provisioning_tests.clients import rancher
from rancher_provisioning_tests.extensions import verify
from rancher_provisioning_tests.framework import wait
from rancher_provisioning_tests.utils import configuration
from rancher_provisioning_tests.utils import helpers

LOGGER = logging.getLogger(__name__)

PROVISIONING_GROUP = "provisioning.cattle.io"
PROVISIONING_VERSION = "v1"
CLUSTERS_PLURAL = "clusters"

MANAGEMENT_GROUP = "management.cattle.io"
MANAGEMENT_VERSION = "v3"
REGISTRATION_TOKENS_PLURAL = "clusterregistrationtokens"
DEFAULT_TOKEN_NAME = "default-token"

CAPI_GROUP = "cluster.x-k8s.io"
CAPI_VERSION = "v1beta1"
MACHINES_PLURAL = "machines"
CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"

RAND_STRING_LENGTH = 5

# Responses of the API server to an invalid object
_REJECTED_STATUSES = frozenset({400, 409, 422})


class ClusterSpecRejectedError(Exception):
    pass


class JoinCommandUnavailableError(Exception):
    pass


@dataclasses.dataclass(frozen=True)
class ClusterSpec:
    """Desired configuration of a provisioning cluster."""

    name: str
    namespace: str = configuration.NAMESPACE
    kubernetes_version: str = ""
    cni: str = ""
    profile: str | None = None
    cloud_credential: str = ""
    machine_pools: tuple[dict, ...] = ()

    @property
    def custom(self) -> bool:
        """Nodes of a cluster without machine pools register themselves."""
        return not self.machine_pools

    def machine_global_config(self) -> dict:
        config: dict[str, tp.Any] = {
            "disable-kube-proxy": False,
            "etcd-expose-metrics": False,
            "profile": self.profile,
        }
        if self.cni:
            config["cni"] = self.cni
        return config

    def to_manifest(self) -> dict:
        """Return the `provisioning.cattle.io/v1` Cluster object."""
        rke_config = {
            "chartValues": {},
            "machineGlobalConfig": self.machine_global_config(),
            "machinePools": [dict(p) for p in self.machine_pools],
            "registries": {"configs": {}, "mirrors": {}},
            "upgradeStrategy": {
                "controlPlaneConcurrency": "10%",
                "controlPlaneDrainOptions": {},
                "workerConcurrency": "10%",
                "workerDrainOptions": {},
            },
            "etcd": {
                "disableSnapshots": False,
                "snapshotRetention": 5,
                "snapshotScheduleCron": "0 */5 * * *",
            },
        }
        spec: dict[str, tp.Any] = {
            "localClusterAuthEndpoint": {"caCerts": "", "enabled": False, "fqdn": ""},
            "rkeConfig": rke_config,
        }
        if self.kubernetes_version:
            spec["kubernetesVersion"] = self.kubernetes_version
        if self.cloud_credential:
            spec["cloudCredentialSecretName"] = self.cloud_credential

        return {
            "apiVersion": f"{PROVISIONING_GROUP}/{PROVISIONING_VERSION}",
            "kind": "Cluster",
            "metadata": {"name": self.name, "namespace": self.namespace},
            "spec": spec,
        }


@dataclasses.dataclass(frozen=True, order=True)
class ClusterHandle:
    name: str
    namespace: str
    uid: str = ""


def append_random_string(base_cluster_name: str) -> str:
    """Return unique cluster name.

    >>> len(append_random_string("automationdo-")) == len("automationdo-") + RAND_STRING_LENGTH
    True
    """
    return f"{base_cluster_name}{helpers.get_rand_str(RAND_STRING_LENGTH)}"


def new_rke2_cluster_config(
    cluster_name: str,
    namespace: str,
    cni: str,
    cloud_credential: str,
    kubernetes_version: str,
    machine_pools: tp.Iterable[dict],
) -> ClusterSpec:
    return ClusterSpec(
        name=cluster_name,
        namespace=namespace,
        kubernetes_version=kubernetes_version,
        cni=cni,
        cloud_credential=cloud_credential,
        machine_pools=tuple(machine_pools),
    )


def new_custom_cluster_config(
    cluster_name: str = "",
    namespace: str = configuration.NAMESPACE,
    kubernetes_version: str = configuration.CUSTOM_KUBERNETES_VERSION,
    cni: str = "",
) -> ClusterSpec:
    return ClusterSpec(
        name=cluster_name or append_random_string("test-cluster-"),
        namespace=namespace,
        kubernetes_version=kubernetes_version,
        cni=cni,
    )


def delete_cluster(client: rancher.RancherClient, handle: ClusterHandle) -> None:
    try:
        client.custom_objects.delete_namespaced_custom_object(
            group=PROVISIONING_GROUP,
            version=PROVISIONING_VERSION,
            namespace=handle.namespace,
            plural=CLUSTERS_PLURAL,
            name=handle.name,
        )
    except k8s_exceptions.ApiException as exc:
        if exc.status != 404:
            raise
        LOGGER.debug(f"Cluster '{handle.namespace}/{handle.name}' was already deleted.")
        return
    LOGGER.info(f"Deleted cluster '{handle.namespace}/{handle.name}'.")


def create_cluster(client: rancher.RancherClient, spec: ClusterSpec) -> ClusterHandle:
    """Submit the cluster spec and register deletion of the cluster on the client's session."""
    try:
        created = client.custom_objects.create_namespaced_custom_object(
            group=PROVISIONING_GROUP,
            version=PROVISIONING_VERSION,
            namespace=spec.namespace,
            plural=CLUSTERS_PLURAL,
            body=spec.to_manifest(),
        )
    except k8s_exceptions.ApiException as exc:
        if exc.status in _REJECTED_STATUSES:
            msg = f"Cluster spec '{spec.namespace}/{spec.name}' was rejected: {exc.body}"
            raise ClusterSpecRejectedError(msg) from exc
        raise

    metadata = created.get("metadata") or {}
    handle = ClusterHandle(
        name=metadata.get("name") or spec.name,
        namespace=metadata.get("namespace") or spec.namespace,
        uid=metadata.get("uid") or "",
    )
    client.session.defer(
        delete_cluster,
        client,
        handle,
        description=f"delete cluster '{handle.namespace}/{handle.name}'",
    )
    LOGGER.info(f"Created cluster '{handle.namespace}/{handle.name}'.")
    return handle


def get_cluster(client: rancher.RancherClient, handle: ClusterHandle) -> dict:
    return client.custom_objects.get_namespaced_custom_object(
        group=PROVISIONING_GROUP,
        version=PROVISIONING_VERSION,
        namespace=handle.namespace,
        plural=CLUSTERS_PLURAL,
        name=handle.name,
    )


def watch_cluster(
    client: rancher.RancherClient,
    handle: ClusterHandle,
    timeout_seconds: int | None = None,
) -> wait.EventStream:
    """Watch the single cluster object."""
    return wait.watch(
        client.custom_objects.list_namespaced_custom_object,
        PROVISIONING_GROUP,
        PROVISIONING_VERSION,
        handle.namespace,
        CLUSTERS_PLURAL,
        field_selector=wait.name_selector(handle.name),
        timeout_seconds=timeout_seconds,
    )


def _status(obj: dict | None) -> dict:
    return (obj or {}).get("status") or {}


def is_provisioning_cluster_ready(cluster: dict | None) -> bool:
    """Check that the cluster is ready and all updates were applied."""
    status = _status(cluster)
    updated = any(
        c.get("type") == "Updated" and c.get("status") == "True"
        for c in status.get("conditions") or []
    )
    return bool(status.get("ready")) and updated


def has_management_cluster(cluster: dict | None) -> bool:
    return bool(_status(cluster).get("clusterName"))


def _wait_for(
    client: rancher.RancherClient,
    handle: ClusterHandle,
    predicate: wait.Predicate,
    timeout: int | None,
) -> dict:
    timeout = timeout or configuration.WATCH_TIMEOUT_SECONDS
    stream = watch_cluster(client=client, handle=handle, timeout_seconds=timeout)
    return wait.wait_until(stream=stream, predicate=predicate, timeout=timeout)


def wait_for_create(
    client: rancher.RancherClient, handle: ClusterHandle, timeout: int | None = None
) -> dict:
    """Wait until the cluster is fully provisioned, return the cluster object."""
    LOGGER.info(f"Waiting for cluster '{handle.namespace}/{handle.name}' to be provisioned.")
    return _wait_for(
        client=client, handle=handle, predicate=is_provisioning_cluster_ready, timeout=timeout
    )


def wait_for_cluster_namespace(
    client: rancher.RancherClient, handle: ClusterHandle, timeout: int | None = None
) -> str:
    """Wait until the management cluster exists, return its name (and namespace)."""
    cluster = _wait_for(
        client=client, handle=handle, predicate=has_management_cluster, timeout=timeout
    )
    return _status(cluster)["clusterName"]


def _node_command(token: dict | None) -> str:
    return _status(token).get("insecureNodeCommand") or ""


def join_command(client: rancher.RancherClient, handle: ClusterHandle) -> str:
    """Return the command that registers a new node with the cluster.

    The cluster namespace and the registration token need to exist already, there's no retry.
    """
    mgmt_name = _status(get_cluster(client=client, handle=handle)).get("clusterName")
    if not mgmt_name:
        msg = f"Cluster '{handle.namespace}/{handle.name}' has no management cluster yet."
        raise JoinCommandUnavailableError(msg)

    try:
        tokens = client.custom_objects.list_namespaced_custom_object(
            MANAGEMENT_GROUP, MANAGEMENT_VERSION, mgmt_name, REGISTRATION_TOKENS_PLURAL
        )
    except k8s_exceptions.ApiException as exc:
        if exc.status != 404:
            raise
        msg = f"Namespace '{mgmt_name}' of cluster '{handle.name}' doesn't exist yet."
        raise JoinCommandUnavailableError(msg) from exc

    # Prefer the default token
    items = sorted(
        tokens.get("items") or [],
        key=lambda t: (t.get("metadata") or {}).get("name") != DEFAULT_TOKEN_NAME,
    )
    for token in items:
        command = _node_command(token)
        if command:
            return command

    msg = f"No registration token with a node command in '{mgmt_name}'."
    raise JoinCommandUnavailableError(msg)


def wait_for_join_command(
    client: rancher.RancherClient, handle: ClusterHandle, timeout: int | None = None
) -> str:
    """Wait for the cluster namespace and its registration token, return the join command."""
    timeout = timeout or configuration.WATCH_TIMEOUT_SECONDS
    mgmt_name = wait_for_cluster_namespace(client=client, handle=handle, timeout=timeout)
    stream = wait.watch(
        client.custom_objects.list_namespaced_custom_object,
        MANAGEMENT_GROUP,
        MANAGEMENT_VERSION,
        mgmt_name,
        REGISTRATION_TOKENS_PLURAL,
        timeout_seconds=timeout,
    )
    wait.wait_until(stream=stream, predicate=lambda t: bool(_node_command(t)), timeout=timeout)
    return join_command(client=client, handle=handle)


def machines(client: rancher.RancherClient, handle: ClusterHandle) -> list[verify.MachineRecord]:
    """Return machines of the cluster."""
    machine_list = client.custom_objects.list_namespaced_custom_object(
        CAPI_GROUP,
        CAPI_VERSION,
        handle.namespace,
        MACHINES_PLURAL,
        label_selector=f"{CLUSTER_NAME_LABEL}={handle.name}",
    )
    return [verify.MachineRecord.from_object(m) for m in machine_list.get("items") or []]
