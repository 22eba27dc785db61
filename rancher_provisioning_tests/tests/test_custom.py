"""Tests for custom clusters, i.e. clusters whose nodes register themselves with a join command."""

import logging
import typing as tp

import allure
import pytest
import pytest_subtests

from rancher_provisioning_tests.clients import rancher
from rancher_provisioning_tests.extensions import clusters
from rancher_provisioning_tests.extensions import systemdnode
from rancher_provisioning_tests.extensions import topology
from rancher_provisioning_tests.extensions import users
from rancher_provisioning_tests.extensions import verify
from rancher_provisioning_tests.framework import session as session_mod
from rancher_provisioning_tests.tests import common
from rancher_provisioning_tests.utils import configuration
from rancher_provisioning_tests.utils import helpers
from rancher_provisioning_tests.utils import temptools

LOGGER = logging.getLogger(__name__)

pytestmark = common.SKIPIF_NO_RANCHER

ALL_ROLES = topology.NodeRoles.all()
NO_EXECUTE_TAINT = topology.Taint(key="key", value="value", effect="NoExecute")


def _provision_custom_cluster(
    client: rancher.RancherClient,
    session: session_mod.Session,
    nodes: tp.Sequence[topology.NodeSpec],
) -> list[verify.MachineRecord]:
    """Create a custom cluster, join simulated nodes to it and return its machines."""
    handle = clusters.create_cluster(
        client=client, spec=clusters.new_custom_cluster_config()
    )
    command = clusters.wait_for_join_command(client=client, handle=handle)
    assert command, "Empty join command"

    scripts = [systemdnode.script_for_node(join_command=command, node=n) for n in nodes]
    scripts_dir = temptools.get_bootstrap_scripts_dir(cluster_name=handle.name)
    for idx, script in enumerate(scripts):
        (scripts_dir / f"node{idx}.sh").write_text(script, encoding="utf-8")

    systemdnode.launch_many(
        session=session, client=client, namespace=handle.namespace, scripts=scripts
    )

    clusters.wait_for_create(client=client, handle=handle)
    return clusters.machines(client=client, handle=handle)


class TestCustom:
    """Tests for custom clusters."""

    @allure.link(helpers.get_vcs_link())
    @pytest.mark.skipif(
        not configuration.CATTLE_SYSTEM_AGENT_VERSION,
        reason="`CATTLE_SYSTEM_AGENT_VERSION` is not set",
    )
    def test_system_agent_version(self, admin_client: rancher.RancherClient):
        """Check that Rancher advertises the expected system agent version."""
        version = users.get_system_agent_version(client=admin_client)
        assert version, "The `system-agent-version` setting is empty"
        assert version == configuration.CATTLE_SYSTEM_AGENT_VERSION

    @allure.link(helpers.get_vcs_link())
    @common.SKIPIF_RKE2
    def test_one_node(
        self,
        admin_client: rancher.RancherClient,
        case_session: session_mod.Session,
        subtests: pytest_subtests.SubTests,
    ):
        """Provision a single node cluster with all roles and custom labels."""
        labels = {"foo": "bar", "ball": "life"}
        machines = _provision_custom_cluster(
            client=admin_client,
            session=case_session,
            nodes=[topology.NodeSpec(roles=ALL_ROLES, labels=labels)],
        )

        assert len(machines) == 1, f"Expected 1 machine, found {len(machines)}"
        machine = machines[0]
        common.report_mismatches(
            subtests, verify.verify_role_labels(machine, ALL_ROLES), check="roles"
        )
        common.report_mismatches(subtests, verify.verify_addresses(machine, 2), check="addresses")
        common.report_mismatches(subtests, verify.verify_labels(machine, labels), check="labels")

    @allure.link(helpers.get_vcs_link())
    def test_three_node(
        self,
        admin_client: rancher.RancherClient,
        case_session: session_mod.Session,
        subtests: pytest_subtests.SubTests,
    ):
        """Provision a cluster of three nodes, every node with all roles."""
        labels = {"rancher": "awesome"}
        machines = _provision_custom_cluster(
            client=admin_client,
            session=case_session,
            nodes=[topology.NodeSpec(roles=ALL_ROLES, labels=labels)] * 3,
        )

        assert len(machines) == 3, f"Expected 3 machines, found {len(machines)}"
        for machine in machines:
            common.report_mismatches(
                subtests, verify.verify_role_labels(machine, ALL_ROLES), check="roles"
            )
            common.report_mismatches(
                subtests, verify.verify_labels(machine, labels), check="labels"
            )

    @allure.link(helpers.get_vcs_link())
    def test_unique_roles(
        self,
        admin_client: rancher.RancherClient,
        case_session: session_mod.Session,
    ):
        """Provision a cluster with 3 etcd nodes, 1 control plane node and 1 worker node."""
        node_roles = [
            *[topology.NodeRoles(etcd=True)] * 3,
            topology.NodeRoles(controlplane=True),
            topology.NodeRoles(worker=True),
        ]
        machines = _provision_custom_cluster(
            client=admin_client,
            session=case_session,
            nodes=[topology.NodeSpec(roles=r) for r in node_roles],
        )

        expected = topology.RoleCounts(controlplane=1, etcd=3, worker=1, total=5)
        assert expected == topology.expected_role_counts(node_roles)
        common.check_mismatches(verify.verify_roles(machines, expected), check="role counts")

    @allure.link(helpers.get_vcs_link())
    @common.SKIPIF_RKE2
    def test_three_node_with_taints(
        self,
        admin_client: rancher.RancherClient,
        case_session: session_mod.Session,
        subtests: pytest_subtests.SubTests,
    ):
        """Provision a cluster of three nodes, only the second node is tainted."""
        labels = {"rancher": "awesome"}
        nodes = [
            topology.NodeSpec(
                roles=ALL_ROLES,
                labels=labels,
                taints=(NO_EXECUTE_TAINT,) if i == 1 else (),
            )
            for i in range(3)
        ]
        machines = _provision_custom_cluster(
            client=admin_client, session=case_session, nodes=nodes
        )

        assert len(machines) == 3, f"Expected 3 machines, found {len(machines)}"
        for machine in machines:
            common.report_mismatches(
                subtests, verify.verify_role_labels(machine, ALL_ROLES), check="roles"
            )
            common.report_mismatches(
                subtests, verify.verify_labels(machine, labels), check="labels"
            )
        common.check_mismatches(
            verify.verify_single_tainted(machines, [NO_EXECUTE_TAINT]), check="taints"
        )
