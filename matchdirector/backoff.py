# SPDX-License-Identifier: GPL-2.0-or-later
"""Capped, jittered exponential backoff for backend calls."""

import asyncio
import logging
import random

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
)

from matchdirector.errors import is_retryable
from matchdirector.monitoring import director_retries

MAX_RETRIES = 10
INITIAL_DELAY_SECS = 0.2
MAX_DELAY_SECS = 10.0
JITTER_PERCENT = 5


class Backoff:
    """Retry delay policy.

    Iterating over the policy yields at most `max_retries` delays, in seconds:
    `initial * 2**n`, shifted by up to ±`jitter` of its value and capped to
    `cap`. Each iteration starts a new sequence, so one policy can be shared
    by any number of retried calls.
    """

    def __init__(self, initial=INITIAL_DELAY_SECS, cap=MAX_DELAY_SECS,
                 jitter=JITTER_PERCENT / 100, max_retries=MAX_RETRIES,
                 rng=random):
        if initial <= 0 or cap <= 0:
            raise ValueError("backoff delays must be positive")
        if not 0 <= jitter < 1:
            raise ValueError("jitter must be in [0, 1)")
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        self.initial = initial
        self.cap = cap
        self.jitter = jitter
        self.max_retries = max_retries
        self.rng = rng

    @classmethod
    def from_config(cls, config):
        """Builds a policy from a ``retry`` configuration section."""
        config = config or {}
        return cls(
            initial=config.get('initial_secs', INITIAL_DELAY_SECS),
            cap=config.get('max_secs', MAX_DELAY_SECS),
            jitter=config.get('jitter_percent', JITTER_PERCENT) / 100,
            max_retries=config.get('max_retries', MAX_RETRIES),
        )

    def __iter__(self):
        delay = self.initial
        for _ in range(self.max_retries):
            jittered = delay + delay * self.jitter * self.rng.uniform(-1, 1)
            yield min(jittered, self.cap)
            delay *= 2

    def __repr__(self):
        return '<Backoff initial={}s cap={}s jitter={:.0%} retries={}>'.format(
            self.initial, self.cap, self.jitter, self.max_retries
        )


def _wait_from(policy):
    delays = iter(policy)

    def wait(retry_state):
        return next(delays, policy.cap)

    return wait


async def retry(operation, policy=None, retryable=is_retryable,
                name='operation', logger=logging):
    """Awaits `operation()` until it succeeds, retrying transient failures.

    A failure for which `retryable` is false is raised immediately. Once the
    delays of `policy` are exhausted, the last failure is raised as-is.
    Cancellation while waiting between attempts stops the retry sequence.
    """
    policy = policy if policy is not None else Backoff()

    def before_sleep(retry_state):
        logger.debug("%s failed (attempt %d), retrying in %.3fs: %s",
                     name, retry_state.attempt_number,
                     retry_state.next_action.sleep,
                     retry_state.outcome.exception())
        director_retries.labels(operation=name).inc()

    def give_up(retry_state):
        logger.info("%s: giving up after %d attempts: %s",
                    name, retry_state.attempt_number,
                    retry_state.outcome.exception())
        return retry_state.outcome.result()

    retrying = AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=_wait_from(policy),
        retry=retry_if_exception(
            lambda exn: isinstance(exn, Exception) and retryable(exn)
        ),
        before_sleep=before_sleep,
        retry_error_callback=give_up,
        sleep=asyncio.sleep,
    )
    return await retrying(operation)
