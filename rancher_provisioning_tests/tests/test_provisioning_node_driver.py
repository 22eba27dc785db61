"""Tests for node-driver clusters, i.e. clusters whose machines are created by Rancher in a cloud."""

import logging
import typing as tp

import allure
import pytest

from rancher_provisioning_tests.clients import rancher
from rancher_provisioning_tests.extensions import cloudcredentials
from rancher_provisioning_tests.extensions import clusters
from rancher_provisioning_tests.extensions import machinepools
from rancher_provisioning_tests.extensions import matrix
from rancher_provisioning_tests.framework import session as session_mod
from rancher_provisioning_tests.tests import common
from rancher_provisioning_tests.utils import cattle_config
from rancher_provisioning_tests.utils import configuration
from rancher_provisioning_tests.utils import helpers

LOGGER = logging.getLogger(__name__)

pytestmark = common.SKIPIF_NO_RANCHER


def _get_providers() -> tuple[str, ...]:
    """Return names of configured providers, all providers when none is configured."""
    providers = cattle_config.get_provisioning_input().providers
    return tuple(p.lower() for p in providers) or tuple(cloudcredentials.PROVIDERS)


def _static_cases() -> list[matrix.ProvisioningCase]:
    provisioning_input = cattle_config.get_provisioning_input()
    return matrix.expand(
        role_templates=matrix.DEFAULT_TEMPLATES,
        kubernetes_versions=provisioning_input.kubernetes_versions,
        cnis=provisioning_input.cnis,
    )


def _dynamic_cases() -> list[matrix.ProvisioningCase]:
    provisioning_input = cattle_config.get_provisioning_input()
    return matrix.expand_dynamic(
        node_roles=matrix.nodes_and_roles_input(),
        kubernetes_versions=provisioning_input.kubernetes_versions,
        cnis=provisioning_input.cnis,
    )


def _params(cases: tp.Sequence[matrix.ProvisioningCase]) -> list:
    """Return pytest params of every case for every provider."""
    ids = matrix.case_ids(cases)
    return [
        pytest.param(provider, case, id=f"{provider}-{case_id}")
        for provider in _get_providers()
        for case, case_id in zip(cases, ids)
    ]


class CredentialsCache:
    """Cloud credentials shared by all cases of a provider.

    The credentials are created on first use and deleted together with the `session`.
    """

    def __init__(self, client: rancher.RancherClient) -> None:
        self.client = client
        self._credentials: dict[str, str] = {}

    def get(self, provider: cloudcredentials.CloudProvider) -> str:
        if provider.name not in self._credentials:
            self._credentials[provider.name] = provider.create_credential(client=self.client)
        return self._credentials[provider.name]


@pytest.fixture(scope="module")
def credentials(
    suite: common.SuiteContext,
) -> tp.Generator[CredentialsCache, None, None]:
    creds_session = suite.session.child(name="cloud-credentials")
    yield CredentialsCache(client=suite.admin_client.with_session(creds_session))
    creds_session.cleanup()


def _acting_client(
    suite: common.SuiteContext, user: matrix.ActingUser, session: session_mod.Session
) -> rancher.RancherClient:
    client = suite.standard_client if user == matrix.ActingUser.STANDARD else suite.admin_client
    return client.with_session(session)


def _provision(
    suite: common.SuiteContext,
    credentials: CredentialsCache,
    case_session: session_mod.Session,
    provider_name: str,
    case: matrix.ProvisioningCase,
) -> None:
    """Provision a node-driver cluster for the case and wait until it's ready."""
    provider = cloudcredentials.get_provider(provider_name)
    cloud_credential = credentials.get(provider)
    client = _acting_client(suite=suite, user=case.user, session=case_session)
    LOGGER.info(f"Provisioning case '{case.name}' on '{provider.name}'.")

    cluster_name = clusters.append_random_string(provider.cluster_name_prefix)
    machine_config = machinepools.create_machine_config(
        client=client,
        provider=provider,
        manifest=provider.new_machine_config(
            generated_pool_name=f"nc-{cluster_name}-pool1-", namespace=configuration.NAMESPACE
        ),
    )
    machine_pools = machinepools.rke_machine_pool_setup(
        node_roles=case.node_roles, machine_config=machine_config
    )
    spec = clusters.new_rke2_cluster_config(
        cluster_name=cluster_name,
        namespace=configuration.NAMESPACE,
        cni=case.cni,
        cloud_credential=cloud_credential,
        kubernetes_version=case.kubernetes_version,
        machine_pools=machine_pools,
    )

    handle = clusters.create_cluster(client=client, spec=spec)
    clusters.wait_for_create(client=client, handle=handle)
    assert handle.name == cluster_name


class TestNodeDriverProvisioning:
    """Tests for provisioning of node-driver RKE2 clusters."""

    @allure.link(helpers.get_vcs_link())
    @pytest.mark.parametrize(("provider_name", "case"), _params(_static_cases()))
    def test_provisioning(
        self,
        suite: common.SuiteContext,
        credentials: CredentialsCache,
        case_session: session_mod.Session,
        provider_name: str,
        case: matrix.ProvisioningCase,
    ):
        """Provision a cluster for every role template, user, Kubernetes version and CNI."""
        _provision(
            suite=suite,
            credentials=credentials,
            case_session=case_session,
            provider_name=provider_name,
            case=case,
        )

    @allure.link(helpers.get_vcs_link())
    @pytest.mark.parametrize(("provider_name", "case"), _params(_dynamic_cases()))
    def test_provisioning_dynamic_input(
        self,
        suite: common.SuiteContext,
        credentials: CredentialsCache,
        case_session: session_mod.Session,
        provider_name: str,
        case: matrix.ProvisioningCase,
    ):
        """Provision a cluster for role assignments taken from the `nodesAndRoles` config.

        Skipped (empty parameter set) when no role assignments are configured.
        """
        _provision(
            suite=suite,
            credentials=credentials,
            case_session=case_session,
            provider_name=provider_name,
            case=case,
        )
