import contextlib
import datetime
import functools
import inspect
import itertools
import json
import logging
import os
import pathlib as pl
import random
import shutil
import string
import subprocess
import types as tt
import typing as tp

LOGGER = logging.getLogger(__name__)

GITHUB_URL = "https://github.com/rancher/rancher-provisioning-tests"


def run_command(
    command: str | list,
    *,
    workdir: str | pl.Path = "",
    ignore_fail: bool = False,
) -> bytes:
    """Run command."""
    cmd: list
    if isinstance(command, str):
        cmd = command.split()
        cmd_str = command
    else:
        cmd = command
        cmd_str = " ".join(command)

    LOGGER.debug("Running `%s`", cmd_str)

    with subprocess.Popen(
        cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, cwd=workdir or None
    ) as p:
        stdout, stderr = p.communicate()
        retcode = p.returncode

    if not ignore_fail and retcode != 0:
        err_dec = stderr.decode()
        err_dec = err_dec or stdout.decode()
        msg = f"An error occurred while running `{cmd_str}`: {err_dec}"
        raise RuntimeError(msg)

    return stdout


@functools.cache
def get_current_commit() -> str:
    if os.environ.get("GIT_REVISION"):
        return os.environ["GIT_REVISION"]
    # Not running from a git checkout, e.g. installed package
    if not shutil.which("git"):
        return "main"
    return run_command("git rev-parse HEAD", ignore_fail=True).decode().strip() or "main"


def get_rand_str(length: int = 8) -> str:
    """Return random string of lowercase letters."""
    if length < 1:
        return ""
    return "".join(random.choice(string.ascii_lowercase) for i in range(length))


def prepend_flag(flag: str, contents: tp.Iterable) -> list[str]:
    """Prepend flag to every item of the sequence.

    Args:
        flag: A flag to prepend to every item of the `contents`.
        contents: A list (iterable) of content to be prepended.

    Returns:
        list[str]: A list of flag followed by content, see below.

    >>> prepend_flag("--label", ["foo=bar", "ball=life"])
    ['--label', 'foo=bar', '--label', 'ball=life']
    """
    return list(itertools.chain.from_iterable([flag, str(x)] for x in contents))


def get_timestamped_rand_str(rand_str_length: int = 4) -> str:
    """Return random string prefixed with timestamp.

    >>> len(get_timestamped_rand_str()) == len("200801_002401314_cinf")
    True
    """
    timestamp = datetime.datetime.now(tz=datetime.UTC).strftime("%y%m%d_%H%M%S%f")[:-3]
    rand_str_component = get_rand_str(length=rand_str_length)
    rand_str_component = rand_str_component and f"_{rand_str_component}"
    return f"{timestamp}{rand_str_component}"


def get_line_str_from_frame(frame: tt.FrameType) -> str:
    lineno = frame.f_lineno
    fpath = frame.f_globals["__file__"]
    line_str = f"{fpath}#L{lineno}"
    return line_str


def get_vcs_link() -> str:
    """Return link to the current line in GitHub."""
    calling_frame = None
    with contextlib.suppress(AttributeError):
        calling_frame = inspect.currentframe().f_back  # type: ignore

    if not calling_frame:
        msg = "Couldn't get the calling frame."
        raise ValueError(msg)

    line_str = get_line_str_from_frame(frame=calling_frame)
    loc_part = line_str[line_str.find("rancher_provisioning_tests") :]
    url = f"{GITHUB_URL}/blob/{get_current_commit()}/{loc_part}"
    return url


def decode_json_annotation(value: str | None, default: tp.Any) -> tp.Any:
    """Decode JSON encoded annotation value, return `default` for missing value."""
    if not value:
        return default
    return json.loads(value)
