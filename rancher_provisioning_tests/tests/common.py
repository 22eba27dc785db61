import dataclasses
import logging
import typing as tp

import pytest
import pytest_subtests

from rancher_provisioning_tests.clients import rancher
from rancher_provisioning_tests.framework import session as session_mod
from rancher_provisioning_tests.utils import cattle_config
from rancher_provisioning_tests.utils import configuration

LOGGER = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class SuiteContext:
    """Shared state of the live suite, created once per test run."""

    session: session_mod.Session
    admin_client: rancher.RancherClient
    standard_user: rancher.User
    standard_client: rancher.RancherClient
    provisioning_input: cattle_config.ProvisioningInput


# Common `skipif`s
SKIPIF_NO_RANCHER = pytest.mark.skipif(
    not (configuration.RANCHER_HOST and configuration.RANCHER_ADMIN_TOKEN),
    reason="`RANCHER_HOST` and `RANCHER_ADMIN_TOKEN` are not set",
)

SKIPIF_RKE2 = pytest.mark.skipif(
    configuration.DIST == "rke2",
    reason="not applicable to RKE2 custom clusters",
)


def report_mismatches(
    subtests: pytest_subtests.SubTests, mismatches: tp.Iterable[str], check: str = ""
) -> None:
    """Report every mismatch as a separate subtest failure."""
    for mismatch in mismatches:
        with subtests.test(check=check, mismatch=mismatch):
            pytest.fail(mismatch)


def check_mismatches(mismatches: tp.Sequence[str], check: str = "") -> None:
    """Fail with all the mismatches at once."""
    if mismatches:
        mismatches_str = "\n".join(f"  {m}" for m in mismatches)
        pytest.fail(f"{check or 'verification'} failed:\n{mismatches_str}")


def hypothesis_settings(max_examples: int = 100) -> tp.Any:
    import hypothesis

    return hypothesis.settings(
        max_examples=max_examples,
        deadline=None,
        suppress_health_check=(
            hypothesis.HealthCheck.too_slow,
            hypothesis.HealthCheck.function_scoped_fixture,
        ),
    )
