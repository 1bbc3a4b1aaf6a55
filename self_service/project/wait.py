"""
Convergence Waiter

Blocks until an object's existence matches a target state, using the
list-then-watch pattern:

1. List with a name field selector until the API answers with a
   resourceVersion (a freshly installed kind may not be listable yet).
2. Fast path: if the object already is (or is not) there, return at once.
3. Watch from that resourceVersion and feed every event to ``state_reached``.
4. Streams that close early restart at step 1.

The whole wait is bounded by a timeout, and a short settle delay follows
both success and failure so that the API server's caches catch up before
the caller acts on the result.
"""

from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Optional, Union
import asyncio
import logging

from ..config import Settings
from ..errors import SelfServiceError, TransportError, WaitTimeoutError, WatchError
from ..k8s.resources import ResourceApi, WatchEvent, WatchEventType
from ..retry_config import list_retrying

logger = logging.getLogger(__name__)


class WaitForState(str, Enum):
    CREATED = "Created"
    DELETED = "Deleted"


@dataclass(frozen=True)
class WaitTiming:
    """Timing knobs of the waiter, all in seconds."""

    timeout: float = 30.0
    watch_timeout: int = 10
    list_retry_interval: float = 0.1
    empty_watch_backoff: float = 0.25
    settle_delay: float = 0.1

    @classmethod
    def from_settings(cls, settings: Settings) -> "WaitTiming":
        return cls(
            timeout=settings.wait_timeout_seconds,
            watch_timeout=settings.watch_timeout_seconds,
            list_retry_interval=settings.list_retry_interval_seconds,
            empty_watch_backoff=settings.empty_watch_backoff_seconds,
            settle_delay=settings.settle_delay_seconds
        )


def state_reached(state: WaitForState, event: WatchEvent) -> bool:
    """Decide whether a single watch event satisfies the target state."""
    if event.type in (WatchEventType.ADDED, WatchEventType.MODIFIED):
        return state == WaitForState.CREATED
    if event.type == WatchEventType.DELETED:
        return state == WaitForState.DELETED
    # BOOKMARK and ERROR never decide a wait
    return False


def existence_matches(state: WaitForState, obj: Optional[Any]) -> bool:
    return (obj is not None) == (state == WaitForState.CREATED)


async def _list_resource_version(api: ResourceApi, selector: str, timing: WaitTiming) -> str:
    try:
        async for attempt in list_retrying(timing.list_retry_interval):
            with attempt:
                listing = await api.list(field_selector=selector)
                if not listing.resource_version:
                    raise TransportError(f"list of {api.kind} returned no resourceVersion")
    except TransportError as e:
        # Only non-retryable failures get here; the rest are retried until the wait times out
        raise WatchError(f"listing {api.kind} failed: {e}") from e
    return listing.resource_version


async def _wait(api: ResourceApi, name: str, state: WaitForState, timing: WaitTiming) -> None:
    selector = f"metadata.name={name}"
    target = api.describe(name)

    while True:
        resource_version = await _list_resource_version(api, selector, timing)

        try:
            current = await api.get(name)
        except TransportError as e:
            if not e.retryable:
                raise WatchError(f"reading {target} failed: {e}") from e
            logger.debug(f"[WAIT] Get of {target} failed, re-listing: {e}")
            continue

        if existence_matches(state, current):
            logger.debug(f"[WAIT] {target} already {state.value}")
            return

        saw_events = False
        try:
            async with aclosing(api.watch(
                field_selector=selector,
                resource_version=resource_version,
                timeout_seconds=timing.watch_timeout
            )) as events:
                async for event in events:
                    saw_events = True
                    if event.type == WatchEventType.ERROR:
                        logger.warning(f"[WAIT] Error event while watching {target}: {event.object.get('message')}")
                        continue
                    if event.name is not None and event.name != name:
                        continue
                    if state_reached(state, event):
                        logger.debug(f"[WAIT] {target} reached {state.value} ({event.type.value})")
                        return
        except TransportError as e:
            if not e.retryable:
                raise WatchError(f"watching {target} failed: {e}") from e
            logger.debug(f"[WAIT] Watch of {target} interrupted, re-listing: {e}")
            continue

        if not saw_events:
            # Closed before anything happened: the server is not ready to serve this watch yet
            await asyncio.sleep(timing.empty_watch_backoff)


async def wait_for_state(
    api: ResourceApi,
    name: str,
    state: WaitForState,
    timeout: Optional[float] = None,
    timing: Optional[WaitTiming] = None
) -> None:
    """
    Wait until ``name`` reaches ``state``.

    Args:
        api: ResourceApi of the object's kind (bound to its namespace, if any)
        name: Object name
        state: WaitForState.CREATED or WaitForState.DELETED
        timeout: Budget for the whole wait (default: timing.timeout)
        timing: Waiter timings (default: WaitTiming())

    Raises:
        WaitTimeoutError: If the state is not reached in time
        WatchError: If watching fails in a way retrying will not fix
    """
    timing = timing or WaitTiming()
    timeout = timing.timeout if timeout is None else timeout

    try:
        await asyncio.wait_for(_wait(api, name, state, timing), timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"[WAIT] Timed out after {timeout}s waiting for {api.describe(name)} to be {state.value}")
        await asyncio.sleep(timing.settle_delay)
        raise WaitTimeoutError(api.kind, name, state.value, timeout) from e
    except SelfServiceError:
        await asyncio.sleep(timing.settle_delay)
        raise

    await asyncio.sleep(timing.settle_delay)


def start_waiting(
    api: ResourceApi,
    name: str,
    state: WaitForState,
    timeout: Optional[float] = None,
    timing: Optional[WaitTiming] = None
) -> "asyncio.Task[None]":
    """Start a wait in the background; register it before acting, await it after."""
    return asyncio.create_task(
        wait_for_state(api, name, state, timeout=timeout, timing=timing),
        name=f"wait {api.describe(name)} {state.value}"
    )


async def _cancel(tasks) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def observe(waiter: "asyncio.Task[None]", action: Awaitable[Any]) -> Any:
    """
    Run ``action`` and then await ``waiter``, which must already be started.

    The waiter is cancelled when the action fails.
    """
    try:
        result = await action
    except BaseException:
        await _cancel([waiter])
        raise
    await waiter
    return result


async def wait_for_all(*waits: Union[Awaitable[None], "asyncio.Task[None]"], timeout: Optional[float] = None) -> None:
    """
    Join concurrent waits.

    Succeeds only if every wait succeeds before ``timeout``. The first failure,
    or the timeout, cancels the waits still running.
    """
    tasks = [asyncio.ensure_future(w) for w in waits]
    if not tasks:
        return

    try:
        done, pending = await asyncio.wait(tasks, timeout=timeout, return_when=asyncio.FIRST_EXCEPTION)
    except BaseException:
        await _cancel(tasks)
        raise

    if pending:
        await _cancel(pending)

    for task in tasks:
        if task in done and not task.cancelled() and task.exception() is not None:
            raise task.exception()

    if pending:
        names = ", ".join(sorted(task.get_name() for task in pending))
        raise WaitTimeoutError("waits", names, "complete", timeout)
