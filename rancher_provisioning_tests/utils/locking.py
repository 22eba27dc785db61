import contextlib
import logging
import typing as tp

from rancher_provisioning_tests.utils import configuration

FileLockIfXdist: tp.Any = contextlib.nullcontext

# Pytest workers append to the same session log, one writer at a time.
# A single process doesn't need the file lock.
if configuration.IS_XDIST:
    import filelock

    logging.getLogger("filelock").setLevel(logging.WARNING)
    FileLockIfXdist = filelock.FileLock
