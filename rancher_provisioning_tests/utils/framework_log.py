import functools
import logging
import pathlib as pl
import time
import typing as tp

from rancher_provisioning_tests.utils import temptools


@functools.cache
def get_framework_log_path() -> pl.Path:
    return temptools.get_pytest_worker_tmp() / "framework.log"


@functools.cache
def framework_logger() -> logging.Logger:
    """Get logger for the `framework.log` file.

    The logger is configured per worker. Only events of the harness itself go there, i.e. a failed
    suite setup or resources that were left behind because their cleanup failed.
    """

    class UTCFormatter(logging.Formatter):
        converter = time.gmtime  # type: ignore[assignment]

    formatter = UTCFormatter("%(asctime)s %(levelname)s %(message)s")
    handler = logging.FileHandler(get_framework_log_path())
    handler.setFormatter(formatter)

    logger = logging.getLogger("framework")
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)

    return logger


def log_setup_failure(stage: str, exc: BaseException) -> None:
    """Record a failure of suite setup that aborts the whole test run."""
    framework_logger().error(f"Suite setup failed in '{stage}': {exc!r}")


def log_cleanup_errors(session_name: str, errors: tp.Iterable[BaseException]) -> None:
    """Record resources that may have been left behind by a session."""
    for err in errors:
        framework_logger().warning(f"Cleanup of session '{session_name}' failed: {err!r}")
