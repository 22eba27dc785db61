"""Expansion of role templates, Kubernetes versions and CNIs into provisioning cases.

The expansion is a pure function of its inputs, independent of any live system. The live tests
only map over the generated cases.
"""

import dataclasses
import enum
import itertools
import logging
import typing as tp

from rancher_provisioning_tests.extensions import topology
from rancher_provisioning_tests.utils import cattle_config

LOGGER = logging.getLogger(__name__)


class ActingUser(enum.Enum):
    ADMIN = "Admin User"
    STANDARD = "Standard User"


ALL_USERS = (ActingUser.ADMIN, ActingUser.STANDARD)


@dataclasses.dataclass(frozen=True, order=True)
class RoleTemplate:
    name: str
    node_roles: tuple[topology.NodeRoles, ...]


ALL_ROLES_ONE_NODE = RoleTemplate(name="1 Node all roles", node_roles=(topology.NodeRoles.all(),))
ONE_ROLE_PER_NODE = RoleTemplate(
    name="3 nodes - 1 role per node",
    node_roles=(
        topology.NodeRoles(controlplane=True),
        topology.NodeRoles(etcd=True),
        topology.NodeRoles(worker=True),
    ),
)
DEFAULT_TEMPLATES = (ALL_ROLES_ONE_NODE, ONE_ROLE_PER_NODE)


@dataclasses.dataclass(frozen=True)
class ProvisioningCase:
    """Single provisioning scenario, executed as an independent test."""

    template_name: str
    node_roles: tuple[topology.NodeRoles, ...]
    kubernetes_version: str
    cni: str
    user: ActingUser

    @property
    def name(self) -> str:
        prefix = " ".join(p for p in (self.template_name, self.user.value) if p)
        return f"{prefix} Kubernetes version: {self.kubernetes_version} cni: {self.cni}"

    @property
    def role_counts(self) -> topology.RoleCounts:
        return topology.expected_role_counts(self.node_roles)


def expand(
    role_templates: tp.Iterable[RoleTemplate],
    kubernetes_versions: tp.Iterable[str],
    cnis: tp.Iterable[str],
    users: tp.Iterable[ActingUser] = ALL_USERS,
) -> list[ProvisioningCase]:
    """Return Cartesian product of templates x users x Kubernetes versions x CNIs.

    >>> cases = expand([ALL_ROLES_ONE_NODE], ["v1.27"], ["calico", "canal"])
    >>> len(cases), cases[0].name
    (4, '1 Node all roles Admin User Kubernetes version: v1.27 cni: calico')
    """
    return [
        ProvisioningCase(
            template_name=template.name,
            node_roles=template.node_roles,
            kubernetes_version=k8s_version,
            cni=cni,
            user=user,
        )
        for template, user, k8s_version, cni in itertools.product(
            tuple(role_templates), tuple(users), tuple(kubernetes_versions), tuple(cnis)
        )
    ]


def expand_dynamic(
    node_roles: tp.Iterable[topology.NodeRoles],
    kubernetes_versions: tp.Iterable[str],
    cnis: tp.Iterable[str],
    users: tp.Iterable[ActingUser] = ALL_USERS,
) -> list[ProvisioningCase]:
    """Expand externally supplied role assignments.

    No cases are generated for empty input, the tests that depend on it are skipped.
    """
    node_roles = tuple(node_roles)
    if not node_roles:
        return []
    template = RoleTemplate(name="", node_roles=node_roles)
    return expand(
        role_templates=[template], kubernetes_versions=kubernetes_versions, cnis=cnis, users=users
    )


def nodes_and_roles_input() -> tuple[topology.NodeRoles, ...]:
    """Return role assignments from the `nodesAndRoles` key of the test config."""
    provisioning_input = cattle_config.get_provisioning_input()
    return tuple(topology.NodeRoles.from_mapping(r) for r in provisioning_input.nodes_and_roles)


def case_ids(cases: tp.Iterable[ProvisioningCase]) -> list[str]:
    """Return pytest IDs for the cases."""
    return [c.name.replace(" ", "_") for c in cases]
