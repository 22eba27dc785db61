"""Machine configs and machine pools of node-driver clusters."""

import logging
import typing as tp

from kubernetes.client import exceptions as k8s_exceptions

from rancher_provisioning_tests.clients import rancher
from rancher_provisioning_tests.extensions import cloudcredentials
from rancher_provisioning_tests.extensions import topology

LOGGER = logging.getLogger(__name__)


def _delete_machine_config(
    client: rancher.RancherClient, plural: str, namespace: str, name: str
) -> None:
    try:
        client.custom_objects.delete_namespaced_custom_object(
            group=cloudcredentials.MACHINE_CONFIG_GROUP,
            version=cloudcredentials.MACHINE_CONFIG_VERSION,
            namespace=namespace,
            plural=plural,
            name=name,
        )
    except k8s_exceptions.ApiException as exc:
        if exc.status != 404:
            raise


def create_machine_config(
    client: rancher.RancherClient,
    provider: cloudcredentials.CloudProvider,
    manifest: dict,
) -> dict:
    """Create machine config object and register its deletion."""
    namespace = manifest["metadata"]["namespace"]
    created = client.custom_objects.create_namespaced_custom_object(
        group=cloudcredentials.MACHINE_CONFIG_GROUP,
        version=cloudcredentials.MACHINE_CONFIG_VERSION,
        namespace=namespace,
        plural=provider.resource_plural,
        body=manifest,
    )
    name = created["metadata"]["name"]
    client.session.defer(
        _delete_machine_config,
        client,
        provider.resource_plural,
        namespace,
        name,
        description=f"delete machine config '{namespace}/{name}'",
    )
    LOGGER.info(f"Created {provider.machine_config_kind} '{namespace}/{name}'.")
    return created


def new_rke_machine_pool(
    roles: topology.NodeRoles,
    pool_name: str,
    quantity: int,
    machine_config: dict,
) -> dict:
    return {
        "controlPlaneRole": roles.controlplane,
        "etcdRole": roles.etcd,
        "workerRole": roles.worker,
        "machineConfigRef": {
            "kind": machine_config["kind"],
            "name": machine_config["metadata"]["name"],
        },
        "name": pool_name,
        "quantity": quantity,
    }


def rke_machine_pool_setup(
    node_roles: tp.Iterable[topology.NodeRoles], machine_config: dict
) -> list[dict]:
    """Return one machine pool with a single machine for every role assignment."""
    return [
        new_rke_machine_pool(
            roles=roles, pool_name=f"pool{i}", quantity=1, machine_config=machine_config
        )
        for i, roles in enumerate(node_roles)
    ]
