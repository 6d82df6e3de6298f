"""Bounded wait for a cluster object to reach a phase."""

from __future__ import annotations

import logging
import time
from typing import Callable, Collection

import requests

from .errors import ToolkitError
from .schemas import PollError, PollOutcome, Reached, StillPending

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 10.0
DEFAULT_MAX_ATTEMPTS = 21


def poll_until(
    sample: Callable[[], str],
    target: str,
    fail_phases: Collection[str] = (),
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    interval: float = DEFAULT_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
    name: str = "resource",
) -> PollOutcome:
    """Sample until ``target`` shows up, a fail phase shows up, or attempts run out.

    ``sample`` raising a gateway or transport error ends the wait straight away,
    same as a fail phase. ``sleep`` is the only blocking call, so a
    KeyboardInterrupt during the wait propagates to the caller untouched.
    """
    last = None
    attempts = 0
    while attempts < max_attempts:
        attempts += 1
        try:
            phase = sample()
        except (ToolkitError, requests.RequestException) as e:
            logger.debug("sampling %s failed: %s", name, e)
            return PollError(cause=str(e), phase=last, attempts=attempts)
        last = str(phase)

        if phase == target:
            return Reached(phase=last, attempts=attempts)
        if phase in fail_phases:
            return PollError(cause=f"{name} is {last}", phase=last, attempts=attempts)

        if attempts < max_attempts:
            logger.info(
                "%s is not %s yet, status: %s. Sleeping for %g seconds",
                name,
                target,
                last,
                interval,
            )
            sleep(interval)

    return StillPending(phase=last, attempts_left=0, attempts=attempts)
