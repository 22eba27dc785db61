import pathlib as pl
import typing as tp

from _pytest.tmpdir import TempPathFactory


class PytestTempDirs:
    """Pytest temporary directories that are used accross the framework.

    The class is initialized in `conftest.py` where we have access to the `tmp_path_factory`
    fixture.
    """

    pytest_worker_tmp: tp.ClassVar[pl.Path | None] = None

    @classmethod
    def init(cls, tmp_path_factory: TempPathFactory) -> None:
        cls.pytest_worker_tmp = pl.Path(tmp_path_factory.getbasetemp())


def get_pytest_worker_tmp() -> pl.Path:
    """Return Pytest temporary directory for the current worker."""
    if PytestTempDirs.pytest_worker_tmp is None:
        msg = "PytestTempDirs are not initialized."
        raise RuntimeError(msg)
    return PytestTempDirs.pytest_worker_tmp


def get_bootstrap_scripts_dir(cluster_name: str) -> pl.Path:
    """Return directory for bootstrap scripts that were fed to the nodes of a cluster.

    The scripts embed the join token, so the directory is readable only by the owner.
    """
    scripts_dir = get_pytest_worker_tmp() / "bootstrap-scripts" / cluster_name
    scripts_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
    return scripts_dir
