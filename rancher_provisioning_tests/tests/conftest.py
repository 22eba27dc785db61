import logging
import os
import typing as tp

import pytest
from _pytest.fixtures import FixtureRequest
from _pytest.tmpdir import TempPathFactory
from pytest_metadata.plugin import metadata_key

from rancher_provisioning_tests.clients import rancher
from rancher_provisioning_tests.extensions import users
from rancher_provisioning_tests.framework import session as session_mod
from rancher_provisioning_tests.tests import common
from rancher_provisioning_tests.utils import cattle_config
from rancher_provisioning_tests.utils import configuration
from rancher_provisioning_tests.utils import framework_log
from rancher_provisioning_tests.utils import helpers
from rancher_provisioning_tests.utils import temptools

LOGGER = logging.getLogger(__name__)


def pytest_configure(config: tp.Any) -> None:
    config.stash[metadata_key]["RANCHER_HOST"] = configuration.RANCHER_HOST
    config.stash[metadata_key]["RANCHER_INSECURE"] = str(configuration.RANCHER_INSECURE)
    config.stash[metadata_key]["DIST"] = configuration.DIST
    config.stash[metadata_key]["NAMESPACE"] = configuration.NAMESPACE
    config.stash[metadata_key]["WATCH_TIMEOUT_SECONDS"] = str(
        configuration.WATCH_TIMEOUT_SECONDS
    )
    config.stash[metadata_key]["SYSTEMD_NODE_IMAGE"] = configuration.SYSTEMD_NODE_IMAGE
    config.stash[metadata_key]["CATTLE_TEST_CONFIG"] = str(configuration.CATTLE_TEST_CONFIG)
    config.stash[metadata_key]["KEEP_RESOURCES"] = str(configuration.KEEP_RESOURCES)
    config.stash[metadata_key]["rancher-provisioning-tests rev"] = helpers.get_current_commit()
    config.stash[metadata_key]["rancher-provisioning-tests url"] = (
        f"{helpers.GITHUB_URL}/tree/{helpers.get_current_commit()}"
    )

    if configuration.KEEP_RESOURCES:
        LOGGER.warning(" WARNING: Resources created by tests will NOT be deleted!")


@pytest.fixture(scope="session")
def init_pytest_temp_dirs(tmp_path_factory: TempPathFactory) -> None:
    """Init `PytestTempDirs`."""
    temptools.PytestTempDirs.init(tmp_path_factory=tmp_path_factory)


@pytest.fixture(scope="session")
def change_dir(init_pytest_temp_dirs: None) -> None:
    """Change CWD to temp directory before running tests."""
    tmp_path = temptools.get_pytest_worker_tmp()
    os.chdir(tmp_path)
    LOGGER.info(f"Changed CWD to '{tmp_path}'.")


@pytest.fixture(scope="session", autouse=True)
def session_autouse(init_pytest_temp_dirs: None, change_dir: None) -> None:
    """Autouse session fixtures that are required for session setup and teardown."""


def _cleanup_session(session: session_mod.Session) -> None:
    try:
        session.cleanup()
    except session_mod.CleanupError as exc:
        framework_log.log_cleanup_errors(session_name=session.name, errors=exc.errors)
        raise


def _setup_suite(suite_session: session_mod.Session) -> common.SuiteContext:
    admin_client = rancher.get_admin_client(session=suite_session)
    standard_user = users.create_user_with_role(
        client=admin_client, username=f"testuser-{helpers.get_rand_str(5)}"
    )
    standard_client = admin_client.as_user(standard_user)
    return common.SuiteContext(
        session=suite_session,
        admin_client=admin_client,
        standard_user=standard_user,
        standard_client=standard_client,
        provisioning_input=cattle_config.get_provisioning_input(),
    )


@pytest.fixture(scope="session")
def suite() -> tp.Generator[common.SuiteContext, None, None]:
    """Set up the live suite: admin client, standard user and the provisioning input.

    The test run is aborted when the setup fails, no test can run without it.
    """
    suite_session = session_mod.new_session(name=f"suite-{helpers.get_timestamped_rand_str()}")
    try:
        suite_ctx = _setup_suite(suite_session=suite_session)
    except Exception as exc:
        framework_log.log_setup_failure(stage="suite", exc=exc)
        # Release whatever was created before the failure
        try:
            suite_session.cleanup()
        except session_mod.CleanupError as cleanup_exc:
            framework_log.log_cleanup_errors(
                session_name=suite_session.name, errors=cleanup_exc.errors
            )
        pytest.exit(f"Suite setup failed: {exc}", returncode=1)

    yield suite_ctx

    _cleanup_session(session=suite_session)


@pytest.fixture
def case_session(
    suite: common.SuiteContext, request: FixtureRequest
) -> tp.Generator[session_mod.Session, None, None]:
    """Return a child session of the suite session, cleaned up when the test finishes."""
    child = suite.session.child(name=request.node.name)
    yield child
    _cleanup_session(session=child)


@pytest.fixture
def admin_client(
    suite: common.SuiteContext, case_session: session_mod.Session
) -> rancher.RancherClient:
    """Return admin client that registers cleanups on the test session."""
    return suite.admin_client.with_session(case_session)
