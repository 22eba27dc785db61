"""Tracking of resources created by a test run and their release.

Every resource-creating operation registers a cleanup action on a `Session`. The actions are
executed in reverse order of registration when the session is cleaned up, no matter if the test
passed or failed. A failing cleanup action doesn't prevent the remaining actions from running,
the errors are collected and raised together once the whole stack is drained.

Sessions form a tree. A child session registers its own cleanup on the parent, so resources of
the child are always released before the resources the parent created earlier.
"""

import dataclasses
import datetime
import logging
import threading
import typing as tp

from rancher_provisioning_tests.utils import configuration
from rancher_provisioning_tests.utils import helpers
from rancher_provisioning_tests.utils import locking

LOGGER = logging.getLogger(__name__)


class SessionClosedError(Exception):
    pass


class CleanupError(Exception):
    """One or more cleanup actions of a session failed."""

    def __init__(self, session_name: str, errors: list[BaseException]) -> None:
        self.session_name = session_name
        self.errors = errors
        errors_str = "\n".join(f"  {e!r}" for e in errors)
        super().__init__(
            f"{len(errors)} cleanup action(s) of session '{session_name}' failed:\n{errors_str}"
        )


@dataclasses.dataclass(frozen=True)
class CleanupAction:
    func: tp.Callable
    args: tuple = ()
    kwargs: dict = dataclasses.field(default_factory=dict)
    description: str = ""

    def __call__(self) -> None:
        self.func(*self.args, **self.kwargs)

    def __str__(self) -> str:
        return self.description or getattr(self.func, "__qualname__", repr(self.func))


def _log_to_file(msg: str) -> None:
    if not configuration.SESSION_LOG:
        return

    with (
        locking.FileLockIfXdist(f"{configuration.SESSION_LOG}.lock"),
        open(configuration.SESSION_LOG, "a", encoding="utf-8") as logfile,
    ):
        logfile.write(f"{datetime.datetime.now(tz=datetime.UTC)}: {msg}\n")


class Session:
    """An ordered stack of cleanup actions."""

    def __init__(self, name: str = "", parent: "Session | None" = None) -> None:
        self.name = name or f"session-{helpers.get_rand_str(5)}"
        self.parent = parent
        self._stack: list[CleanupAction] = []
        self._lock = threading.RLock()
        self._closed = False
        self._cleaning_thread: int | None = None
        self._drained = threading.Event()
        _log_to_file(f"created session '{self.name}'")

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._stack)

    def __repr__(self) -> str:
        return f"<Session: name='{self.name}', pending={len(self)}, closed={self.closed}>"

    def defer(
        self, func: tp.Callable, *args: tp.Any, description: str = "", **kwargs: tp.Any
    ) -> CleanupAction:
        """Register a cleanup action that will run when the session is cleaned up."""
        action = CleanupAction(func=func, args=args, kwargs=kwargs, description=description)
        with self._lock:
            if self._closed:
                msg = f"Cannot defer `{action}`, session '{self.name}' is already closed."
                raise SessionClosedError(msg)
            self._stack.append(action)
        LOGGER.debug(f"Session '{self.name}': deferred `{action}`")
        return action

    def child(self, name: str = "") -> "Session":
        """Create a child session whose cleanup runs before the remaining parent's cleanup."""
        child = Session(name=name or f"{self.name}/{helpers.get_rand_str(5)}", parent=self)
        self.defer(child.cleanup, description=f"cleanup of child session '{child.name}'")
        return child

    def _pop(self) -> CleanupAction | None:
        with self._lock:
            if not self._stack:
                return None
            return self._stack.pop()

    def _keep_resources(self) -> None:
        """Close the session without releasing its resources, child sessions are closed too."""
        LOGGER.warning(f"Session '{self.name}': keeping {len(self)} resource(s) as requested.")
        while (action := self._pop()) is not None:
            if isinstance(getattr(action.func, "__self__", None), Session):
                action()

    def _drain(self) -> list[BaseException]:
        errors: list[BaseException] = []
        while (action := self._pop()) is not None:
            LOGGER.debug(f"Session '{self.name}': running `{action}`")
            try:
                action()
            except CleanupError as exc:
                # Errors already collected by a child session
                errors.extend(exc.errors)
            except Exception as exc:
                LOGGER.warning(f"Session '{self.name}': `{action}` failed: {exc!r}")
                errors.append(exc)
        return errors

    def cleanup(self) -> None:
        """Run all deferred actions in reverse registration order.

        All actions are executed even if some of them fail. The failures are raised together as
        `CleanupError` after the stack was fully drained. Calling cleanup on a closed session is
        a no-op. When another thread is already draining the session, the call returns once that
        drain has finished.
        """
        with self._lock:
            if self._closed or self._cleaning_thread == threading.get_ident():
                return
            in_progress = self._cleaning_thread is not None
            if not in_progress:
                self._cleaning_thread = threading.get_ident()

        if in_progress:
            self._drained.wait()
            return

        errors: list[BaseException] = []
        try:
            if configuration.KEEP_RESOURCES:
                self._keep_resources()
            else:
                errors = self._drain()
        finally:
            with self._lock:
                self._closed = True
                self._cleaning_thread = None
            self._drained.set()

        _log_to_file(f"cleaned up session '{self.name}', {len(errors)} error(s)")
        if errors:
            raise CleanupError(session_name=self.name, errors=errors)

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *args: object) -> None:
        self.cleanup()


def new_session(name: str = "") -> Session:
    """Return a new top-level session."""
    return Session(name=name)
