"""Waiting for a resource to reach a desired state.

The waiting is driven by a watch on the resource - a stream of change events
(`ADDED`, `MODIFIED`, `DELETED`, `ERROR`). The predicate is evaluated on every observed state,
in the order the events were emitted by the API server, and the first state satisfying the
predicate is returned. Events are neither reordered nor deduplicated, so predicates must give the
same answer for repeated deliveries of the same state.

The wait is always bounded. The API server closes the watch after `timeout_seconds`, and
`wait_until` additionally enforces its own deadline. In both cases `WatchTimeoutError` is raised
and the underlying stream is released.
"""

import concurrent.futures
import logging
import time
import typing as tp

import urllib3
from kubernetes import watch as k8s_watch
from kubernetes.client import exceptions as k8s_exceptions

from rancher_provisioning_tests.utils import configuration

LOGGER = logging.getLogger(__name__)

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"
ERROR = "ERROR"

# Extra time for the client side read timeout, so the server closes the watch first
_READ_TIMEOUT_BUFFER = 30

Predicate = tp.Callable[[tp.Any], bool]

_STREAM_END = object()


class WatchError(Exception):
    pass


class WatchTimeoutError(TimeoutError):
    pass


class EventStream:
    """Iterable stream of watch events that can be closed."""

    def __init__(
        self,
        events: tp.Iterable[dict],
        on_close: tp.Callable[[], None] | None = None,
        description: str = "",
    ) -> None:
        self._events = events
        self._on_close = on_close
        self.description = description
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> tp.Iterator[dict]:
        if self._closed:
            msg = f"Event stream `{self.description}` is closed."
            raise WatchError(msg)
        return iter(self._events)

    def close(self, close_events: bool = True) -> None:
        """Stop the watch, and release the events generator unless `close_events` is False."""
        if self._closed:
            return
        self._closed = True
        if self._on_close:
            self._on_close()
        if close_events:
            self.close_events()
        LOGGER.debug(f"Closed event stream `{self.description}`")

    def close_events(self) -> None:
        close_gen = getattr(self._events, "close", None)
        if close_gen:
            close_gen()

    def __enter__(self) -> "EventStream":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<EventStream: '{self.description}', closed={self._closed}>"


def watch(
    list_func: tp.Callable,
    *args: tp.Any,
    field_selector: str = "",
    timeout_seconds: int | None = None,
    **kwargs: tp.Any,
) -> EventStream:
    """Start watching resources returned by the `list_func` Kubernetes API function."""
    timeout_seconds = timeout_seconds or configuration.WATCH_TIMEOUT_SECONDS
    k8s_watcher = k8s_watch.Watch()
    stream_kwargs: dict[str, tp.Any] = {
        "timeout_seconds": timeout_seconds,
        "_request_timeout": timeout_seconds + _READ_TIMEOUT_BUFFER,
        **kwargs,
    }
    if field_selector:
        stream_kwargs["field_selector"] = field_selector

    description = f"{getattr(list_func, '__name__', list_func)}{args} {field_selector}".strip()
    LOGGER.debug(f"Watching `{description}` for max {timeout_seconds}s")
    events = k8s_watcher.stream(list_func, *args, **stream_kwargs)
    return EventStream(events=events, on_close=k8s_watcher.stop, description=description)


def name_selector(name: str) -> str:
    """Return field selector for a single object."""
    return f"metadata.name={name}"


def wait_until(
    stream: EventStream,
    predicate: Predicate,
    timeout: float | None = None,
) -> tp.Any:
    """Wait until `predicate` is satisfied by an object delivered by the event stream.

    Events are read on a worker thread, so the deadline is enforced even when the stream goes
    quiet. When the deadline elapses while a read is still in progress, the underlying generator
    is closed by the worker once the read returns.

    Args:
        stream: An event stream, e.g. returned by `watch`.
        predicate: A function returning `True` for the desired object state. Exceptions raised by
            the predicate abort the wait.
        timeout: Client side deadline in seconds (optional).

    Returns:
        Any: The first object for which `predicate` returned `True`.

    Raises:
        WatchTimeoutError: The stream closed, or the deadline elapsed, before `predicate`
            was satisfied.
        WatchError: The watch delivered an error.
    """
    deadline = time.monotonic() + timeout if timeout is not None else None
    events_count = 0
    reader = concurrent.futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="watch")
    future: concurrent.futures.Future | None = None

    def _deadline_error() -> WatchTimeoutError:
        msg = (
            f"Timeout after {timeout}s waiting on condition for `{stream.description}`, "
            f"{events_count} events received"
        )
        return WatchTimeoutError(msg)

    try:
        events = iter(stream)
        while True:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                raise _deadline_error()

            future = reader.submit(next, events, _STREAM_END)
            try:
                event = future.result(timeout=remaining)
            except concurrent.futures.TimeoutError:
                raise _deadline_error() from None
            if event is _STREAM_END:
                break

            events_count += 1
            event_type = event.get("type")
            obj = event.get("object")

            if event_type == ERROR:
                msg = f"Error with watch connection of `{stream.description}`: {obj}"
                raise WatchError(msg)

            LOGGER.debug(f"Got `{event_type}` event #{events_count} on `{stream.description}`")
            if predicate(obj):
                return obj
    except k8s_exceptions.ApiException as exc:
        msg = f"Error with watch connection of `{stream.description}`: {exc}"
        raise WatchError(msg) from exc
    except (urllib3.exceptions.ReadTimeoutError, urllib3.exceptions.ProtocolError) as exc:
        msg = f"Watch of `{stream.description}` was interrupted while waiting on condition"
        raise WatchTimeoutError(msg) from exc
    finally:
        reading = future is not None and not future.done()
        # A generator can't be closed while another thread is reading from it
        stream.close(close_events=not reading)
        if reading:
            reader.submit(stream.close_events)
        reader.shutdown(wait=not reading)

    msg = (
        f"Timeout waiting on condition for `{stream.description}`, the watch closed after "
        f"{events_count} events"
    )
    raise WatchTimeoutError(msg)


def watch_wait(stream: EventStream, check: Predicate) -> tp.Any:
    """Wait until `check` is satisfied, bounded only by the watch's own timeout."""
    return wait_until(stream=stream, predicate=check)


def poll_until(
    func: tp.Callable[[], tp.Any],
    predicate: Predicate,
    timeout: float,
    interval: float = 5,
) -> tp.Any:
    """Call `func` repeatedly until its result satisfies `predicate`.

    Used for resources that cannot be watched. Raises `WatchTimeoutError` when `timeout` elapses.
    """
    end_time = time.monotonic() + timeout
    repeat = 0

    while True:
        result = func()
        if predicate(result):
            return result
        if time.monotonic() + interval > end_time:
            msg = f"Condition not satisfied after {repeat + 1} attempts in {timeout} seconds"
            raise WatchTimeoutError(msg)
        repeat += 1
        LOGGER.debug(f"Sleeping {interval}s before polling for the {repeat} time.")
        time.sleep(interval)
