"""Restart policy for the gateway's long-running tasks.

The serial link, the MQTT link and the console reader each run under
``supervise_task``: an unexpected exception restarts the task after an
exponential backoff. A task that ran longer than ``healthy_after`` before
failing starts over with a fresh backoff and restart budget.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import tenacity

from ..const import SUPERVISOR_HEALTHY_WINDOW, SUPERVISOR_MAX_BACKOFF, SUPERVISOR_MIN_BACKOFF

_NEVER_RETRIED: tuple[type[BaseException], ...] = (
    asyncio.CancelledError,
    GeneratorExit,
    KeyboardInterrupt,
    SystemExit,
)


@dataclass(slots=True)
class SupervisedTaskSpec:
    name: str
    factory: Callable[[], Awaitable[None]]
    fatal_exceptions: tuple[type[BaseException], ...] = ()
    max_restarts: int | None = None
    min_backoff: float = SUPERVISOR_MIN_BACKOFF
    max_backoff: float = SUPERVISOR_MAX_BACKOFF
    healthy_after: float = SUPERVISOR_HEALTHY_WINDOW
    # The daemon keeps running when a non-essential task returns or gives up.
    essential: bool = True


@dataclass(slots=True)
class TaskHealth:
    """Restart bookkeeping of one supervised task."""

    name: str
    restarts: int = 0
    last_error: str | None = None
    started_at: float = 0.0

    def mark_started(self) -> None:
        self.started_at = time.monotonic()

    def ran_for(self) -> float:
        return time.monotonic() - self.started_at if self.started_at else 0.0

    def record_failure(self, exc: BaseException | None) -> None:
        self.restarts += 1
        self.last_error = repr(exc) if exc is not None else None


def _build_retrying(spec: SupervisedTaskSpec, health: TaskHealth, log: logging.Logger) -> tenacity.AsyncRetrying:
    def _before_sleep(retry_state: tenacity.RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        health.record_failure(exc)
        log.error("%s failed (%s); restarting in %.1fs", spec.name, exc, delay)

    stop = tenacity.stop_never if spec.max_restarts is None else tenacity.stop_after_attempt(spec.max_restarts + 1)
    return tenacity.AsyncRetrying(
        wait=tenacity.wait_exponential(multiplier=spec.min_backoff, max=spec.max_backoff),
        retry=tenacity.retry_if_not_exception_type(_NEVER_RETRIED + spec.fatal_exceptions),
        stop=stop,
        before_sleep=_before_sleep,
        reraise=True,
    )


async def supervise_task(
    spec: SupervisedTaskSpec,
    *,
    health: TaskHealth | None = None,
    logger: logging.Logger | None = None,
) -> None:
    """Run ``spec.factory`` until it returns, restarting it when it fails."""
    log = logger or logging.getLogger("sensorgate.supervisor")
    health = health or TaskHealth(spec.name)

    while True:
        try:
            async for attempt in _build_retrying(spec, health, log):
                with attempt:
                    health.mark_started()
                    await spec.factory()
            log.warning("%s task exited; supervisor exiting", spec.name)
            return
        except asyncio.CancelledError:
            log.debug("%s supervisor cancelled", spec.name)
            raise
        except spec.fatal_exceptions as exc:
            log.critical("%s failed with fatal exception: %s", spec.name, exc)
            raise
        except Exception as exc:
            if health.ran_for() > spec.healthy_after:
                log.info("%s was healthy for %.0fs; resetting backoff", spec.name, health.ran_for())
                health.record_failure(exc)
                continue
            log.error("%s exceeded max restarts (%s); giving up", spec.name, spec.max_restarts)
            raise


__all__ = ["SupervisedTaskSpec", "TaskHealth", "supervise_task"]
