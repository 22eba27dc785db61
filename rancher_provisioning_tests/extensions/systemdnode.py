"""Simulated nodes that join a custom cluster.

A simulated node is a privileged pod running systemd. It executes the bootstrap script, i.e. the
join command of the cluster followed by the role, label and taint flags, and so registers itself
with Rancher the same way a real machine would. The flags are not interpreted here, that is
the job of the system agent started by the join command.
"""

import concurrent.futures
import dataclasses
import logging
import typing as tp

from kubernetes.client import exceptions as k8s_exceptions

from rancher_provisioning_tests.clients import rancher
from rancher_provisioning_tests.extensions import topology
from rancher_provisioning_tests.framework import session as session_mod
from rancher_provisioning_tests.utils import configuration
from rancher_provisioning_tests.utils import helpers

LOGGER = logging.getLogger(__name__)

SCRIPT_HEADER = "#!/usr/bin/env sh\n"
USER_DATA_KEY = "user-data"
USER_DATA_DIR = "/var/lib/cloud/seed/nocloud"
APP_LABEL = "systemd-node"


@dataclasses.dataclass(frozen=True, order=True)
class AgentHandle:
    name: str
    namespace: str
    secret_name: str
    script: str = dataclasses.field(repr=False, default="")


def build_bootstrap_script(
    join_command: str,
    roles: topology.NodeRoles,
    labels: tp.Mapping[str, str] | None = None,
    taints: tp.Iterable[topology.Taint] = (),
) -> str:
    """Return the bootstrap script of a node.

    >>> build_bootstrap_script("join", topology.NodeRoles(etcd=True), {"foo": "bar"})
    '#!/usr/bin/env sh\\njoin --etcd --label foo=bar'
    """
    join_command = join_command.strip()
    if not join_command:
        msg = "Join command is empty."
        raise ValueError(msg)

    labels = labels or {}
    parts = [
        join_command,
        *roles.flags(),
        *helpers.prepend_flag("--label", [f"{k}={v}" for k, v in labels.items()]),
        *helpers.prepend_flag("--taint", taints),
    ]
    return f"{SCRIPT_HEADER}{' '.join(parts)}"


def script_for_node(join_command: str, node: topology.NodeSpec) -> str:
    return build_bootstrap_script(
        join_command=join_command, roles=node.roles, labels=node.labels, taints=node.taints
    )


def _secret_manifest(namespace: str, script: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            "generateName": f"{APP_LABEL}-data-",
            "namespace": namespace,
            "labels": {"app": APP_LABEL},
        },
        "stringData": {USER_DATA_KEY: script},
    }


def _pod_manifest(namespace: str, secret_name: str, image: str) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "generateName": f"{APP_LABEL}-",
            "namespace": namespace,
            "labels": {"app": APP_LABEL},
        },
        "spec": {
            "automountServiceAccountToken": False,
            # The node would register again after restart
            "restartPolicy": "Never",
            "containers": [
                {
                    "name": "node",
                    "image": image,
                    "securityContext": {"privileged": True},
                    "volumeMounts": [
                        {"name": "user-data", "mountPath": USER_DATA_DIR, "readOnly": True},
                        {"name": "rancher", "mountPath": "/var/lib/rancher"},
                        {"name": "kubelet", "mountPath": "/var/lib/kubelet"},
                    ],
                }
            ],
            "volumes": [
                {"name": "user-data", "secret": {"secretName": secret_name, "defaultMode": 0o755}},
                {"name": "rancher", "emptyDir": {}},
                {"name": "kubelet", "emptyDir": {}},
            ],
        },
    }


def _delete_ignore_missing(delete_func: tp.Callable, name: str, namespace: str) -> None:
    try:
        delete_func(name=name, namespace=namespace)
    except k8s_exceptions.ApiException as exc:
        if exc.status != 404:
            raise
        LOGGER.debug(f"'{namespace}/{name}' was already deleted.")


def launch(
    session: session_mod.Session,
    client: rancher.RancherClient,
    namespace: str,
    script: str,
    image: str = configuration.SYSTEMD_NODE_IMAGE,
) -> AgentHandle:
    """Start a simulated node executing `script` in `namespace`.

    Termination of the node is registered with `session`.
    """
    secret = client.core.create_namespaced_secret(
        namespace=namespace, body=_secret_manifest(namespace=namespace, script=script)
    )
    secret_name = secret.metadata.name
    session.defer(
        _delete_ignore_missing,
        client.core.delete_namespaced_secret,
        secret_name,
        namespace,
        description=f"delete secret '{namespace}/{secret_name}'",
    )

    pod = client.core.create_namespaced_pod(
        namespace=namespace,
        body=_pod_manifest(namespace=namespace, secret_name=secret_name, image=image),
    )
    pod_name = pod.metadata.name
    session.defer(
        _delete_ignore_missing,
        client.core.delete_namespaced_pod,
        pod_name,
        namespace,
        description=f"delete simulated node '{namespace}/{pod_name}'",
    )

    LOGGER.info(f"Launched simulated node '{namespace}/{pod_name}'.")
    return AgentHandle(name=pod_name, namespace=namespace, secret_name=secret_name, script=script)


def launch_many(
    session: session_mod.Session,
    client: rancher.RancherClient,
    namespace: str,
    scripts: tp.Sequence[str],
    max_workers: int | None = None,
) -> list[AgentHandle]:
    """Start simulated nodes in parallel.

    Every launch is awaited. When some of them fail, the nodes that were started are still
    registered with `session` and the first error is re-raised.
    """
    if not scripts:
        return []

    num_threads = min(max_workers or configuration.NODE_LAUNCH_WORKERS, len(scripts))
    with concurrent.futures.ThreadPoolExecutor(max_workers=num_threads) as executor:
        futures = [
            executor.submit(launch, session=session, client=client, namespace=namespace, script=s)
            for s in scripts
        ]
        concurrent.futures.wait(futures)

    errors = [f.exception() for f in futures if f.exception() is not None]
    for err in errors:
        LOGGER.error(f"Failed to launch simulated node in '{namespace}': {err!r}")
    if errors:
        raise errors[0]  # type: ignore[misc]

    return [f.result() for f in futures]
